"""Connection-level timeouts that uvicorn does not provide out of the box.

* ``HeaderTimeoutH11Protocol`` closes connections whose first request
  head has not arrived within a fixed window after the connection (and
  its TLS handshake) is established.
* ``WriteDeadlineMiddleware`` fails any response send that happens after
  the request's write deadline, which makes uvicorn drop the connection.

The full-read deadline lives with the body reader in ``server`` and the
idle timeout is uvicorn's own ``timeout_keep_alive``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send
from uvicorn.protocols.http.h11_impl import H11Protocol

logger = logging.getLogger(__name__)


class WriteTimeoutError(TimeoutError):
    """Raised when a response is written after its deadline."""


class HeaderTimeoutH11Protocol(H11Protocol):
    """h11 protocol that bounds how long a client may take to send headers."""

    read_header_timeout: float = 5.0

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        super().connection_made(transport)
        self._header_timer: asyncio.TimerHandle | None = self.loop.call_later(
            self.read_header_timeout, self._on_header_timeout
        )

    def data_received(self, data: bytes) -> None:
        super().data_received(data)
        # A cycle exists once h11 has parsed a complete request head
        if self._header_timer is not None and self.cycle is not None:
            self._header_timer.cancel()
            self._header_timer = None

    def connection_lost(self, exc: Exception | None) -> None:
        if self._header_timer is not None:
            self._header_timer.cancel()
            self._header_timer = None
        super().connection_lost(exc)

    def _on_header_timeout(self) -> None:
        self._header_timer = None
        if self.cycle is None and not self.transport.is_closing():
            logger.info(
                "Closing connection from %s: no request head within %ss",
                self.client, self.read_header_timeout,
            )
            self.transport.close()


def header_timeout_protocol(read_header_timeout: float) -> type[HeaderTimeoutH11Protocol]:
    """Return a protocol class bound to the given header-read timeout."""
    return type(
        "HeaderTimeoutH11Protocol",
        (HeaderTimeoutH11Protocol,),
        {"read_header_timeout": read_header_timeout},
    )


class WriteDeadlineMiddleware:
    """ASGI middleware bounding the time from request start to last write."""

    def __init__(self, app: ASGIApp, timeout: float) -> None:
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        async def send_before_deadline(message: Message) -> None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise WriteTimeoutError(_late(scope))
            try:
                await asyncio.wait_for(send(message), remaining)
            except asyncio.TimeoutError as e:
                raise WriteTimeoutError(_late(scope)) from e

        await self.app(scope, receive, send_before_deadline)


def _late(scope: dict[str, Any]) -> str:
    return f"Write deadline exceeded for {scope.get('method')} {scope.get('path')}"
