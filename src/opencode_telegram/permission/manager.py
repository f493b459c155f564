from __future__ import annotations

from ..logging import get_logger
from ..model import PermissionRequest

logger = get_logger(__name__)


class PermissionManager:
    def __init__(self) -> None:
        self._request: PermissionRequest | None = None
        self._message_id: int | None = None

    def start(self, request: PermissionRequest) -> None:
        if self._request is not None:
            logger.warning(
                "permission.replaced",
                previous_request_id=self._request.id,
                request_id=request.id,
            )
        logger.info(
            "permission.started",
            request_id=request.id,
            permission=request.permission,
            patterns=list(request.patterns),
        )
        self._request = request
        self._message_id = None

    @property
    def request(self) -> PermissionRequest | None:
        return self._request

    @property
    def request_id(self) -> str | None:
        return self._request.id if self._request else None

    @property
    def permission_type(self) -> str | None:
        return self._request.permission if self._request else None

    @property
    def patterns(self) -> list[str]:
        return list(self._request.patterns) if self._request else []

    @property
    def message_id(self) -> int | None:
        return self._message_id

    def set_message_id(self, message_id: int) -> None:
        self._message_id = message_id

    @property
    def is_active(self) -> bool:
        return self._request is not None

    def clear(self) -> None:
        if self._request is not None:
            logger.debug("permission.cleared", request_id=self._request.id)
        self._request = None
        self._message_id = None

    def reset(self) -> None:
        self.clear()
