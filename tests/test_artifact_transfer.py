import os
import threading

import pytest
from werkzeug.serving import make_server
from werkzeug.test import Client

from distbuild.artifact_cache import ArtifactCache, ArtifactError
from distbuild.artifact_transfer import ArtifactHandler, download
from distbuild.mux import ServeMux


def make_id(prefix: bytes) -> str:
    return prefix.ljust(20, b"\0").hex()


ID_ONE = make_id(b"\x01")
ID_TWO = make_id(b"\x02")


@pytest.fixture
def remote_cache(tmp_path):
    return ArtifactCache(tmp_path / "remote")


@pytest.fixture
def local_cache(tmp_path):
    return ArtifactCache(tmp_path / "local")


@pytest.fixture
def mux(remote_cache):
    router = ServeMux()
    ArtifactHandler(remote_cache).register(router)
    return router


@pytest.fixture
def server_url(mux):
    server = make_server("127.0.0.1", 0, mux, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    thread.join()


def publish(cache, artifact_id, content):
    with cache.create(artifact_id) as pending:
        with open(os.path.join(pending.path, "a.txt"), "wb") as handle:
            handle.write(content)


def read_artifact(cache, artifact_id):
    with cache.get(artifact_id) as directory:
        with open(os.path.join(directory, "a.txt"), "rb") as handle:
            return handle.read()


def test_artifact_transfer(remote_cache, local_cache, server_url):
    publish(remote_cache, ID_ONE, b"foobar")

    download(server_url, local_cache, ID_ONE)

    assert read_artifact(local_cache, ID_ONE) == b"foobar"

    with pytest.raises(ArtifactError):
        download(server_url, local_cache, ID_TWO)


def test_repeated_download_keeps_content(remote_cache, local_cache, server_url):
    publish(remote_cache, ID_ONE, b"foobar")

    download(server_url, local_cache, ID_ONE)
    download(server_url, local_cache, ID_ONE)

    assert read_artifact(local_cache, ID_ONE) == b"foobar"
    assert list(local_cache) == [ID_ONE]


def test_handler_requires_id(mux):
    assert Client(mux).get("/artifact").status_code == 400


def test_handler_rejects_malformed_id(mux):
    assert Client(mux).get("/artifact?id=zz").status_code == 400


def test_handler_missing_artifact_is_server_error(mux):
    assert Client(mux).get(f"/artifact?id={ID_TWO}").status_code == 500


def test_handler_releases_read_lock(remote_cache, mux):
    publish(remote_cache, ID_ONE, b"foobar")

    response = Client(mux).get(f"/artifact?id={ID_ONE}")
    assert response.status_code == 200

    remote_cache.remove(ID_ONE)
    assert list(remote_cache) == []