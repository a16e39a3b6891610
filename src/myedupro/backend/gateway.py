"""Backend gateway surface shared by the HTTP and degraded implementations."""

import abc
import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import structlog

from myedupro.backend.errors import BackendError
from myedupro.models.auth import AuthEvent, Session

logger = structlog.get_logger()

# Type alias for session-change callbacks
SessionChangeHandler = Callable[[AuthEvent, Session | None], Coroutine[Any, Any, None]]


@dataclass
class GatewayResponse:
    """Result of a gateway call; exactly one of data or error is meaningful."""

    data: Any = None
    error: BackendError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return data, or raise the attached error."""
        if self.error is not None:
            raise self.error
        return self.data


class Subscription:
    """Cancellable handle for a registered listener."""

    def __init__(self, on_unsubscribe: Callable[[], None] | None = None):
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_unsubscribe is not None:
            self._on_unsubscribe()


class BackendGateway(abc.ABC):
    """Identity, record and object-storage operations of the backend collaborator.

    Implementations never raise for backend or transport failures; they
    return a ``GatewayResponse`` whose ``error`` carries the classification.
    """

    def __init__(self) -> None:
        self._session_handlers: list[SessionChangeHandler] = []
        self._pending: set[asyncio.Task] = set()

    # Identity

    @abc.abstractmethod
    async def get_current_session(self) -> GatewayResponse: ...

    @abc.abstractmethod
    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> GatewayResponse: ...

    @abc.abstractmethod
    async def sign_in(self, email: str, password: str) -> GatewayResponse: ...

    @abc.abstractmethod
    async def sign_out(self) -> GatewayResponse: ...

    def on_session_change(self, handler: SessionChangeHandler) -> Subscription:
        """Register a session-change handler.

        Args:
            handler: Async callback receiving ``(event, session)``.

        Returns:
            Subscription whose ``unsubscribe()`` removes the handler.
        """
        self._session_handlers.append(handler)

        def _remove() -> None:
            if handler in self._session_handlers:
                self._session_handlers.remove(handler)

        return Subscription(_remove)

    async def _notify(self, event: AuthEvent, session: Session | None) -> None:
        """Dispatch a session change to registered handlers."""
        for handler in list(self._session_handlers):
            try:
                await handler(event, session)
            except Exception:
                logger.exception("session_handler_error", auth_event=event.value)

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # Records

    @abc.abstractmethod
    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
        single: bool = False,
    ) -> GatewayResponse: ...

    @abc.abstractmethod
    async def insert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str | None = None,
        ignore_duplicates: bool = False,
    ) -> GatewayResponse: ...

    @abc.abstractmethod
    async def upsert(
        self, table: str, row: dict[str, Any], *, on_conflict: str | None = None
    ) -> GatewayResponse: ...

    @abc.abstractmethod
    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, Any]
    ) -> GatewayResponse: ...

    # Object storage

    @abc.abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> GatewayResponse: ...

    @abc.abstractmethod
    async def remove(self, bucket: str, paths: list[str]) -> GatewayResponse: ...

    @abc.abstractmethod
    def public_url(self, bucket: str, path: str) -> str: ...

    async def aclose(self) -> None:
        """Release transport resources."""
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()
