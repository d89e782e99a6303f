"""HTTP transport for worker heartbeats."""

from __future__ import annotations

import requests
from werkzeug.wrappers import Request, Response

from distbuild.messages import (
    HeartbeatRequest,
    HeartbeatResponse,
    HeartbeatService,
    from_json,
    to_json,
)
from distbuild.mux import ServeMux


class HeartbeatError(Exception):
    """The coordinator did not accept a heartbeat."""


class HeartbeatClient:
    """Sends heartbeats to a coordinator."""

    def __init__(self, endpoint: str) -> None:
        self._url = f"{endpoint}/heartbeat"

    def heartbeat(self, request: HeartbeatRequest) -> HeartbeatResponse:
        """Report the worker state and receive the jobs it should run."""
        response = requests.post(
            self._url,
            data=to_json(request),
            headers={"Content-Type": "application/json"},
        )
        if response.status_code != 200:
            raise HeartbeatError(
                f"got not OK status code - {response.status_code} "
                f"in client heartbeat - {response.text}"
            )
        return from_json(HeartbeatResponse, response.content)


class HeartbeatHandler:
    """HTTP handler that forwards heartbeats to a :class:`HeartbeatService`."""

    def __init__(self, service: HeartbeatService) -> None:
        self._service = service

    def __call__(self, request: Request) -> Response:
        try:
            heartbeat = from_json(HeartbeatRequest, request.get_data())
        except ValueError:
            return Response(status=400)

        try:
            reply = self._service.heartbeat(heartbeat)
        except Exception as error:
            return Response(str(error), status=500, mimetype="text/plain")

        return Response(to_json(reply), mimetype="application/json")

    def register(self, mux: ServeMux) -> None:
        """Serve heartbeats at ``POST /heartbeat``."""
        mux.handle("POST", "/heartbeat", self)