"""CORS headers applied to every route.

A single configured value is sent as ``Access-Control-Allow-Origin`` for
every request, whatever the caller's Origin. There is no per-origin
matching: a list of origins in the config is sent verbatim.

Written as plain ASGI so the wrapped app keeps the server's own
``receive`` and sees ``http.disconnect`` when a client goes away.
"""

from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

ALLOW_METHODS = "GET, POST, OPTIONS, PATCH"
ALLOW_HEADERS = "Content-Type"


class StaticCORSMiddleware:
    """Sets the CORS headers and answers preflight requests itself."""

    def __init__(self, app: ASGIApp, allow_origin: str = "") -> None:
        self.app = app
        self.allow_origin = allow_origin

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.allow_origin,
            "Access-Control-Allow-Methods": ALLOW_METHODS,
            "Access-Control-Allow-Headers": ALLOW_HEADERS,
        }

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(status_code=204, headers=self.headers)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in self.headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)
