"""A small WSGI request router keyed on method and exact path."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from werkzeug.wrappers import Request, Response

Handler = Callable[[Request], Response]


class ServeMux:
    """Dispatch requests to handlers registered for a method and path."""

    def __init__(self) -> None:
        self._routes: dict[str, dict[str, Handler]] = {}

    def handle(self, method: str, path: str, handler: Handler) -> None:
        """Register ``handler`` for requests with ``method`` to ``path``."""
        method = method.upper()
        methods = self._routes.setdefault(path, {})
        if method in methods:
            raise ValueError(f"handler already registered for {method} {path}")
        methods[method] = handler

    def _dispatch(self, request: Request) -> Response:
        methods = self._routes.get(request.path)
        if methods is None:
            return Response("404 page not found\n", status=404, mimetype="text/plain")

        handler = methods.get(request.method)
        if handler is None and request.method == "HEAD":
            handler = methods.get("GET")
        if handler is None:
            return Response(
                "Method Not Allowed\n",
                status=405,
                mimetype="text/plain",
                headers={"Allow": ", ".join(sorted(methods))},
            )
        return handler(request)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ)
        return self._dispatch(request)(environ, start_response)