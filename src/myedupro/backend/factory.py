"""Select the gateway implementation once at startup."""

import structlog

from myedupro.backend.degraded import DegradedGateway
from myedupro.backend.gateway import BackendGateway
from myedupro.backend.http_gateway import HttpGateway
from myedupro.backend.probe import probe_connection
from myedupro.config import Settings
from myedupro.storage.local_state import LocalStateStore

logger = structlog.get_logger()


async def create_gateway(settings: Settings, state_store: LocalStateStore) -> BackendGateway:
    """Build the real gateway, or the degraded one when it cannot be used.

    Degraded mode is chosen when configuration is missing or still a
    template placeholder, or when the startup probe (enabled in development
    by default) reports the backend unreachable.
    """
    if not settings.has_valid_backend_config:
        logger.warning("backend_config_missing_or_placeholder")
        return DegradedGateway(reason="config_missing")

    gateway = HttpGateway(
        settings.backend_url,
        settings.backend_anon_key,
        timeout=settings.request_timeout_seconds,
        state_store=state_store,
    )
    if not settings.should_probe_on_startup:
        return gateway

    if await probe_connection(gateway, timeout=settings.probe_timeout_seconds):
        return gateway

    logger.error(
        "backend_unreachable",
        backend_url=settings.backend_url,
        hint="check whether the project is paused and resume it from the dashboard",
    )
    await gateway.aclose()
    return DegradedGateway(reason="probe_failed")
