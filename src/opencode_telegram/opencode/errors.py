from __future__ import annotations


class OpenCodeError(RuntimeError):
    """Base class for agent API failures."""


class OpenCodeHTTPError(OpenCodeError):
    def __init__(
        self,
        status: int,
        *,
        method: str,
        url: str,
        detail: str | None = None,
    ) -> None:
        self.status = int(status)
        self.method = method
        self.url = url
        self.detail = detail
        super().__init__(str(self))

    def __str__(self) -> str:
        detail = (self.detail or "").strip()
        if detail:
            return f"OpenCode HTTP {self.status} {self.method} {self.url}: {detail}"
        return f"OpenCode HTTP {self.status} {self.method} {self.url}"


class OpenCodeProtocolError(OpenCodeError):
    """Malformed or unexpected body from the agent server."""


class EventStreamUnavailable(OpenCodeError):
    """The server answered ``/event`` without an event stream."""
