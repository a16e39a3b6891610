"""Browser WebSocket handler - pushes a snapshot on every state change."""

import asyncio

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from myedupro.auth.orchestrator import SessionOrchestrator
from myedupro.models.state import AuthSnapshot

logger = structlog.get_logger()


async def _dispatch_action(orchestrator: SessionOrchestrator, msg_type: str) -> None:
    if msg_type == "retry_connection":
        await orchestrator.retry_connection()
    elif msg_type == "retry_profile_load":
        await orchestrator.retry_profile_load()
    elif msg_type == "refresh_progress":
        await orchestrator.refresh_progress()
    elif msg_type == "dismiss_error":
        orchestrator.dismiss_error()
    elif msg_type == "mark_profile_completed":
        orchestrator.mark_profile_completed()
    else:
        logger.warning("unknown_ws_message", msg_type=msg_type)


async def handle_state_websocket(websocket: WebSocket, orchestrator: SessionOrchestrator) -> None:
    """Stream snapshots to the browser and run the actions it sends."""
    await websocket.accept()
    queue: asyncio.Queue[AuthSnapshot] = asyncio.Queue()
    subscription = orchestrator.subscribe(queue.put_nowait)
    queue.put_nowait(orchestrator.snapshot)

    async def _send_loop() -> None:
        while True:
            snapshot = await queue.get()
            await websocket.send_json({"type": "state", "state": snapshot.model_dump(mode="json")})

    sender = asyncio.create_task(_send_loop())
    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                logger.warning("unknown_ws_message", payload_type=type(data).__name__)
                continue
            await _dispatch_action(orchestrator, str(data.get("type", "")))
    except WebSocketDisconnect:
        logger.info("browser_disconnected")
    except Exception:
        logger.exception("websocket_handler_error")
    finally:
        subscription.unsubscribe()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
