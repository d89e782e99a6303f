# distbuild

Building blocks for a distributed build system: content-addressed caches for
build artifacts and source files, HTTP handlers and clients to move them
between machines, the JSON messages and HTTP transport of the build and
heartbeat protocols, a job scheduler, and a client that submits a build graph
and reports job results to a listener.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Identifiers

Artifact and file ids are lower-case hexadecimal strings of even length
(at least two characters), for example `"01"` or `"6100"`. Cache methods raise
`ValueError` for anything else.

## Modules

### `distbuild.tarstream`

- `send(directory, stream)` writes every directory and file below `directory`
  to a binary `stream` as a tar archive, in sorted order, keeping file mode
  bits.
- `receive(directory, stream)` reads such an archive and recreates its entries
  inside `directory`. Directories are created with `os.mkdir`, so they must not
  already exist; files get the mode stored in the archive (subject to the
  umask). An empty stream is accepted and creates nothing.

### `distbuild.artifact_cache`

`ArtifactCache(root)` keeps artifacts as directories under `root`. Creating a
cache clears its temporary area.

- `create(artifact_id)` takes the write lock and returns a `PendingArtifact`
  whose `path` is a fresh directory to fill. `commit()` moves it into the
  cache; `abort()` discards it. Used as a context manager it commits on normal
  exit and aborts on an exception.
- `get(artifact_id)` is a context manager that holds a read lock and yields the
  artifact's directory path.
- `remove(artifact_id)` deletes an artifact; a missing one is ignored.
- Iterating over the cache yields the ids of committed artifacts.

Conflicts raise subclasses of `ArtifactError`: `NotFoundError`, `ExistsError`
(creating an artifact that is already committed), `WriteLockedError` and
`ReadLockedError`.

### `distbuild.filecache`

`FileCache(root)` stores single files on top of an `ArtifactCache`.

- `write(file_id)` returns a `FileWriter` with `write(data)`, `close()` (which
  commits the file) and `abort()`; as a context manager it closes on normal
  exit and aborts on an exception.
- `get(file_id)` is a context manager yielding the path of the stored file.
- `remove(file_id)` and iteration work as for the artifact cache.

Errors are subclasses of `FileCacheError`: `FileNotFoundInCacheError`,
`FileExistsInCacheError`, `FileWriteLockedError` and `FileReadLockedError`.

### `distbuild.mux`

`ServeMux` is a WSGI application. `handle(method, path, handler)` registers a
callable that takes a werkzeug `Request` and returns a `Response`. Unknown
paths get 404, known paths with another method get 405 with an `Allow` header,
and `HEAD` falls back to a `GET` handler.

### `distbuild.artifact_transfer`

- `ArtifactHandler(cache)` serves `GET /artifact?id=<id>` as a tar archive of
  the artifact's directory (400 for a missing or invalid id, 500 if the
  artifact cannot be read). `register(mux)` adds it to a `ServeMux`.
- `download(endpoint, cache, artifact_id)` fetches an artifact from
  `endpoint` into a local `ArtifactCache`, raising `ArtifactError` if the
  server does not answer 200.

### `distbuild.filecache_transfer`

- `FileCacheHandler(cache)` serves `PUT /file?id=<id>` (store the request body)
  and `GET /file?id=<id>` (return the stored file). Uploads of the same id
  share one outcome, so repeated or concurrent uploads succeed; an id already
  in the cache counts as success. `register(mux)` adds both routes.
- `FileCacheClient(endpoint)` has `upload(file_id, local_path)` and
  `download(local_cache, file_id)`; both raise `FileCacheError` on a non-200
  answer.

### `distbuild.messages`

Dataclasses for the protocol: `BuildRequest`, `BuildStarted`, `StatusUpdate`,
`BuildFailed`, `BuildFinished`, `SignalRequest`, `UploadDone`,
`SignalResponse`, `JobResult`, `HeartbeatRequest`, `JobSpec` and
`HeartbeatResponse`. `to_json(message)` encodes one as compact JSON bytes;
`from_json(cls, data)` decodes it, raising `ValueError` on malformed input.
Byte fields are base64 encoded; the keys of `JobSpec.job` sit at the top level
of its JSON object beside `SourceFiles` and `Artifacts`.

The protocols `StatusWriter`, `BuildService` and `HeartbeatService` describe
what the handlers below call.

### `distbuild.heartbeat`

- `HeartbeatHandler(service)` serves `POST /heartbeat`, passing the decoded
  `HeartbeatRequest` to `service.heartbeat` and answering with its
  `HeartbeatResponse`; an exception from the service becomes a 500 with the
  error text.
- `HeartbeatClient(endpoint).heartbeat(request)` sends a heartbeat and returns
  the response, raising `HeartbeatError` (carrying the server's text) otherwise.

### `distbuild.build_api`

- `BuildHandler(service)` serves `POST /build` and `POST /signal?build_id=<id>`.
  A build runs `service.start_build(request, writer)` and streams one JSON line
  per `writer.started` / `writer.updated` call. If the service fails before
  calling `started`, the answer is a 500 with the error text; if it fails
  later, the stream ends with a `StatusUpdate` whose `build_failed.error` is
  the error text.
- `BuildClient(endpoint)`: `start_build(request)` returns
  `(BuildStarted, BuildStatusReader)` or raises `BuildApiError`;
  `signal_build(build_id, signal)` returns a `SignalResponse` or raises
  `BuildApiError`.
- `BuildStatusReader` iterates over `StatusUpdate`s until the stream ends and
  is a context manager that closes the response.

### `distbuild.client`

`Client(endpoint, source_dir).build(graph, listener)` starts a build of
`graph` (a dict in the JSON shape of a build graph), uploads each file the
coordinator reports missing from `source_dir` using the paths in
`graph["SourceFiles"]` (raising `ValueError` for an id it does not list),
signals that uploads are done, and passes every job result to a
`BuildListener` through `on_job_failed`, `on_job_finished`, `on_job_stdout`
and `on_job_stderr`.

### `distbuild.scheduler`

`Scheduler(SchedulerConfig(...))` queues jobs for workers.

- `schedule_job(job_spec)` returns a `PendingJob`; scheduling an id again
  returns the same one.
- `pick_job(worker_id, cancel=None)` blocks until a job is available and
  records `worker_id` as the holder of its artifact; it returns `None` when the
  optional `threading.Event` is set or the scheduler is stopped.
- `on_job_complete(worker_id, job_id, result)` stores the result and sets the
  pending job's `finished` event; an unknown job raises `KeyError`.
- `locate_artifact(artifact_id)` returns the worker id or `None`.
- `stop()` releases every waiting worker.

`BlockingQueue` is the underlying FIFO with `put`, blocking `take` and `close`.

### `distbuild.recorder`

`Recorder` is a `BuildListener` that collects, per job id, a `RecordedJob`
with the decoded `stdout` and `stderr`, the exit `code` (0 on success, `None`
until the job ends) and the `error` text.

## Example

```python
import os

from distbuild.artifact_cache import ArtifactCache

cache = ArtifactCache("/tmp/artifacts")
with cache.create("61") as pending:
    with open(os.path.join(pending.path, "out.txt"), "w") as out:
        out.write("OK")

with cache.get("61") as path:
    with open(os.path.join(path, "out.txt")) as result:
        print(result.read())
```

## Serving

Handlers register on a `ServeMux`, which can be run with any WSGI server:

```python
from werkzeug.serving import run_simple

from distbuild.filecache import FileCache
from distbuild.filecache_transfer import FileCacheHandler
from distbuild.mux import ServeMux

mux = ServeMux()
FileCacheHandler(FileCache("/tmp/files")).register(mux)
run_simple("127.0.0.1", 8080, mux, threaded=True)
```

## What is not included

The package has no command-line program. It provides no coordinator that
implements `BuildService` or `HeartbeatService` (turning a build graph into
scheduled jobs), and no worker process that sends heartbeats, runs job
commands and publishes their artifacts. These have to be supplied on top of the
handlers, clients, caches and `Scheduler` above.