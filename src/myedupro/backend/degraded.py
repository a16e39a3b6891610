"""Degraded-mode gateway used when the backend is unconfigured or unreachable."""

from typing import Any

import structlog

from myedupro.backend.errors import BackendError
from myedupro.backend.gateway import BackendGateway, GatewayResponse, SessionChangeHandler, Subscription
from myedupro.models.auth import AuthEvent

logger = structlog.get_logger()


class DegradedGateway(BackendGateway):
    """Backend surface that resolves every call with the canonical unavailable error.

    ``sign_out`` always succeeds and a new session-change subscription
    receives exactly one synthetic ``SIGNED_OUT`` notification.

    Args:
        reason: Why degraded mode was entered (logged only).
    """

    def __init__(self, reason: str = "unavailable"):
        super().__init__()
        self.reason = reason
        logger.warning("degraded_gateway_active", reason=reason)

    @staticmethod
    def _unavailable() -> GatewayResponse:
        return GatewayResponse(error=BackendError.unavailable())

    async def get_current_session(self) -> GatewayResponse:
        return self._unavailable()

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> GatewayResponse:
        return self._unavailable()

    async def sign_in(self, email: str, password: str) -> GatewayResponse:
        return self._unavailable()

    async def sign_out(self) -> GatewayResponse:
        return GatewayResponse()

    def on_session_change(self, handler: SessionChangeHandler) -> Subscription:
        subscription = Subscription()

        async def _emit_signed_out() -> None:
            if subscription.active:
                try:
                    await handler(AuthEvent.SIGNED_OUT, None)
                except Exception:
                    logger.exception("session_handler_error", auth_event=AuthEvent.SIGNED_OUT.value)

        self._schedule(_emit_signed_out())
        return subscription

    async def select(self, table, filters=None, *, columns="*", limit=None, order=None, single=False):
        return self._unavailable()

    async def insert(self, table, rows, *, on_conflict=None, ignore_duplicates=False):
        return self._unavailable()

    async def upsert(self, table, row, *, on_conflict=None):
        return self._unavailable()

    async def update(self, table, values, filters):
        return self._unavailable()

    async def upload(self, bucket, path, content, *, content_type="application/octet-stream", upsert=True):
        return self._unavailable()

    async def remove(self, bucket: str, paths: list[str]) -> GatewayResponse:
        return self._unavailable()

    def public_url(self, bucket: str, path: str) -> str:
        return ""
