import json

import pytest

from distbuild.messages import (
    BuildFailed,
    BuildFinished,
    BuildRequest,
    BuildStarted,
    HeartbeatRequest,
    HeartbeatResponse,
    JobResult,
    JobSpec,
    SignalRequest,
    SignalResponse,
    StatusUpdate,
    UploadDone,
    from_json,
    to_json,
)

ID_A = bytes([0x61]).ljust(20, b"\0").hex()
ID_B = bytes([0x62]).ljust(20, b"\0").hex()


@pytest.mark.parametrize(
    "message",
    [
        BuildRequest(graph={"SourceFiles": {ID_A: "a.txt"}, "Jobs": []}),
        BuildStarted(id=ID_B, missing_files=[ID_A]),
        BuildFailed(error="boom"),
        BuildFinished(),
        StatusUpdate(
            job_finished=JobResult(id=ID_A, stdout=b"OK\n", stderr=b"", exit_code=3, error="bad"),
            build_failed=BuildFailed(error="bad"),
            build_finished=BuildFinished(),
        ),
        StatusUpdate(),
        UploadDone(),
        SignalRequest(upload_done=UploadDone()),
        SignalRequest(),
        SignalResponse(),
        HeartbeatRequest(
            worker_id="worker0",
            running_jobs=[ID_A],
            free_slots=1,
            finished_job=[JobResult(id=ID_B, stdout=b"\x00\xff")],
            added_artifacts=[ID_B],
        ),
        HeartbeatResponse(
            jobs_to_run={
                ID_A: JobSpec(
                    source_files={ID_B: "b/c.txt"},
                    artifacts={ID_B: "http://127.0.0.1:1/worker/0"},
                    job={"ID": ID_A, "Name": "cc a.c"},
                )
            }
        ),
    ],
)
def test_round_trip(message):
    assert from_json(type(message), to_json(message)) == message


def test_build_failed_wire_form():
    assert to_json(BuildFailed(error="x")) == b'{"Error":"x"}'


def test_signal_request_wire_form():
    assert to_json(SignalRequest(upload_done=UploadDone())) == b'{"UploadDone":{}}'


def test_status_update_absent_parts_are_null():
    wire = json.loads(to_json(StatusUpdate(build_finished=BuildFinished())))
    assert wire == {"JobFinished": None, "BuildFailed": None, "BuildFinished": {}}


def test_job_result_bytes_are_base64():
    wire = json.loads(to_json(JobResult(id=ID_A, stdout=b"OK\n")))
    assert wire["Stdout"] == "T0sK"
    assert wire["Stderr"] is None
    assert wire["Error"] is None


def test_job_spec_flattens_job_fields():
    spec = JobSpec(source_files={ID_A: "a.txt"}, job={"ID": ID_B, "Name": "echo"})
    wire = json.loads(to_json(spec))
    assert wire["Name"] == "echo"
    assert wire["ID"] == ID_B
    assert wire["SourceFiles"] == {ID_A: "a.txt"}
    assert spec.id == ID_B


def test_job_spec_fields_win_over_job_keys():
    spec = JobSpec(source_files={ID_A: "a.txt"}, job={"SourceFiles": {}, "Name": "x"})
    wire = json.loads(to_json(spec))
    assert wire["SourceFiles"] == {ID_A: "a.txt"}


def test_null_collections_decode_empty():
    request = from_json(
        HeartbeatRequest,
        b'{"WorkerID":"w","RunningJobs":null,"FinishedJob":null,"AddedArtifacts":null}',
    )
    assert request == HeartbeatRequest(worker_id="w")
    assert from_json(HeartbeatResponse, b'{"JobsToRun":null}') == HeartbeatResponse()


def test_decode_accepts_text():
    assert from_json(BuildFailed, '{"Error":"boom"}') == BuildFailed(error="boom")


def test_invalid_json_raises():
    with pytest.raises(ValueError):
        from_json(BuildStarted, b"{not json")


def test_non_object_raises():
    with pytest.raises(ValueError):
        from_json(StatusUpdate, b"[1, 2]")


def test_bad_base64_raises():
    with pytest.raises(ValueError):
        from_json(JobResult, b'{"ID":"61","Stdout":"***"}')


def test_wrong_nested_type_raises():
    with pytest.raises(ValueError):
        from_json(StatusUpdate, b'{"BuildFailed":"oops"}')


def test_non_message_rejected():
    with pytest.raises(TypeError):
        to_json({"Error": "x"})
    with pytest.raises(TypeError):
        from_json(dict, b"{}")