"""Backend reachability probe."""

import asyncio

import structlog

from myedupro.backend.errors import ErrorKind
from myedupro.backend.gateway import BackendGateway

logger = structlog.get_logger()


async def probe_connection(gateway: BackendGateway, timeout: float = 5.0) -> bool:
    """Check that the backend answers at the identity and data layers.

    A missing table or empty result still counts as reachable; only
    network-class failures (timeout, connect failure, provider down)
    report False. Never raises.

    Args:
        gateway: Gateway to probe.
        timeout: Upper bound in seconds for each layer's check.

    Returns:
        True if the backend is reachable.
    """
    logger.info("connection_probe_started")
    try:
        auth_result = await asyncio.wait_for(gateway.get_current_session(), timeout)
        if auth_result.error is not None and auth_result.error.kind.is_network_class:
            logger.error("connection_probe_failed", layer="identity", kind=auth_result.error.kind.value)
            return False

        db_result = await asyncio.wait_for(
            gateway.select("user_profiles", columns="id", limit=1), timeout
        )
        if db_result.error is not None:
            if db_result.error.kind.is_network_class:
                logger.error("connection_probe_failed", layer="data", kind=db_result.error.kind.value)
                return False
            if db_result.error.kind == ErrorKind.NOT_FOUND:
                logger.info("connection_probe_schema_missing")
                return True
    except asyncio.TimeoutError:
        logger.error("connection_probe_failed", reason="timeout")
        return False
    except Exception:
        logger.exception("connection_probe_error")
        return False

    logger.info("connection_probe_succeeded")
    return True
