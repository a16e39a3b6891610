"""HTTP gateway for the hosted backend (identity, REST records, object storage)."""

import time
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from myedupro.backend.errors import BackendError, ErrorKind
from myedupro.backend.gateway import BackendGateway, GatewayResponse, SessionChangeHandler, Subscription
from myedupro.models.auth import AuthEvent, Session, UserIdentity
from myedupro.storage.local_state import AUTH_SESSION, LocalStateStore

logger = structlog.get_logger()

# PostgREST codes meaning "no row" or "no such table"; the connection itself is fine
NOT_FOUND_CODES = frozenset({"PGRST116", "PGRST205", "42P01"})

PGRST_OBJECT = "application/vnd.pgrst.object+json"


def _user_from_payload(payload: dict[str, Any]) -> UserIdentity:
    return UserIdentity(
        id=payload["id"],
        email=payload.get("email"),
        user_metadata=payload.get("user_metadata") or {},
    )


def _session_from_payload(payload: dict[str, Any] | None) -> Session | None:
    """Build a Session from a token response, or None when it carries no token."""
    if not payload or "access_token" not in payload:
        return None
    expires_at = payload.get("expires_at")
    if expires_at is None and payload.get("expires_in") is not None:
        expires_at = time.time() + float(payload["expires_in"])
    return Session(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=(
            datetime.fromtimestamp(float(expires_at), tz=timezone.utc)
            if expires_at is not None else None
        ),
        user=_user_from_payload(payload["user"]),
    )


def error_from_response(response: httpx.Response) -> BackendError:
    """Classify a non-2xx response into a BackendError."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.reason_phrase
        or f"HTTP {response.status_code}"
    )
    raw_code = body.get("code") or body.get("error_code")
    code = str(raw_code) if raw_code is not None else None
    status = response.status_code

    if status == 404 or code in NOT_FOUND_CODES:
        kind = ErrorKind.NOT_FOUND
    elif status == 503:
        kind = ErrorKind.UNAVAILABLE
    elif status in (502, 504):
        kind = ErrorKind.NETWORK_UNAVAILABLE
    elif status >= 500:
        kind = ErrorKind.BACKEND_FAULT
    elif status >= 400:
        kind = ErrorKind.INVALID
    else:
        kind = ErrorKind.UNKNOWN
    return BackendError(kind, str(message), code)


class HttpGateway(BackendGateway):
    """Gateway talking to the backend's REST endpoints over httpx.

    Transport exceptions never escape: timeouts become ``TIMEOUT`` and
    connect/read failures become ``NETWORK_UNAVAILABLE``.

    Args:
        base_url: Backend project URL.
        anon_key: Public API key sent with every request.
        timeout: Per-request timeout in seconds.
        state_store: Optional local store used to persist the session.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        state_store: LocalStateStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self._store = state_store
        self._session: Session | None = None
        self._session_restored = False
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": anon_key},
        )

    # Transport

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> GatewayResponse:
        token = self._session.access_token if self._session else self.anon_key
        merged = {"Authorization": f"Bearer {token}"}
        if headers:
            merged.update(headers)
        try:
            response = await self.client.request(method, url, headers=merged, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("backend_request_timeout", method=method, url=url)
            return GatewayResponse(error=BackendError(ErrorKind.TIMEOUT, f"Request timed out: {e}"))
        except httpx.TransportError as e:
            logger.warning("backend_request_failed", method=method, url=url, error=str(e))
            return GatewayResponse(
                error=BackendError(ErrorKind.NETWORK_UNAVAILABLE, f"Cannot reach backend: {e}")
            )

        if response.is_success:
            if not response.content:
                return GatewayResponse(data=None)
            try:
                return GatewayResponse(data=response.json())
            except ValueError:
                # e.g. an HTML page served by a paused project or a proxy
                logger.warning(
                    "backend_response_not_json",
                    method=method,
                    url=url,
                    status=response.status_code,
                    content_type=response.headers.get("content-type"),
                )
                return GatewayResponse(
                    error=BackendError(
                        ErrorKind.BACKEND_FAULT,
                        f"Unexpected non-JSON response (HTTP {response.status_code})",
                    )
                )
        error = error_from_response(response)
        logger.debug(
            "backend_request_error",
            method=method,
            url=url,
            status=response.status_code,
            kind=error.kind.value,
        )
        return GatewayResponse(error=error)

    # Session persistence

    def _restore_session(self) -> Session | None:
        if self._session_restored:
            return self._session
        self._session_restored = True
        if self._store is None:
            return self._session
        raw = self._store.get(AUTH_SESSION)
        if raw:
            try:
                self._session = Session.model_validate_json(raw)
            except ValidationError:
                logger.warning("persisted_session_invalid")
                self._store.remove(AUTH_SESSION)
        return self._session

    def _set_session(self, session: Session | None) -> None:
        self._session = session
        self._session_restored = True
        if self._store is None:
            return
        if session is None:
            self._store.remove(AUTH_SESSION)
        else:
            self._store.set(AUTH_SESSION, session.model_dump_json())

    def _drop_session(self) -> None:
        """Forget a session the provider no longer accepts and tell listeners."""
        self._set_session(None)
        self._schedule(self._notify(AuthEvent.SIGNED_OUT, None))

    # Identity

    async def get_current_session(self) -> GatewayResponse:
        session = self._restore_session()
        if session is None:
            return GatewayResponse(data=None)

        if session.is_expired:
            if not session.refresh_token:
                self._drop_session()
                return GatewayResponse(data=None)
            result = await self._request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
            if result.error is not None:
                if result.error.kind == ErrorKind.INVALID:
                    self._drop_session()
                    return GatewayResponse(data=None)
                return result
            refreshed = _session_from_payload(result.data)
            self._set_session(refreshed)
            self._schedule(self._notify(AuthEvent.TOKEN_REFRESHED, refreshed))
            return GatewayResponse(data=refreshed)

        result = await self._request("GET", "/auth/v1/user")
        if result.error is not None:
            if result.error.kind == ErrorKind.INVALID:
                # token rejected; treat as signed out
                self._drop_session()
                return GatewayResponse(data=None)
            return result
        current = session.model_copy(update={"user": _user_from_payload(result.data)})
        self._set_session(current)
        return GatewayResponse(data=current)

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> GatewayResponse:
        result = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        if result.error is not None:
            return result
        session = _session_from_payload(result.data)
        if session is not None:
            self._set_session(session)
            await self._notify(AuthEvent.SIGNED_IN, session)
            return GatewayResponse(data=session)
        # email confirmation pending: identity exists, no session yet
        return result

    async def sign_in(self, email: str, password: str) -> GatewayResponse:
        result = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if result.error is not None:
            return result
        session = _session_from_payload(result.data)
        self._set_session(session)
        await self._notify(AuthEvent.SIGNED_IN, session)
        return GatewayResponse(data=session)

    async def sign_out(self) -> GatewayResponse:
        result = GatewayResponse()
        if self._restore_session() is not None:
            result = await self._request("POST", "/auth/v1/logout")
        # the local session is dropped even when the remote call fails
        self._set_session(None)
        await self._notify(AuthEvent.SIGNED_OUT, None)
        return result

    def on_session_change(self, handler: SessionChangeHandler) -> Subscription:
        subscription = super().on_session_change(handler)

        async def _emit_initial() -> None:
            if subscription.active:
                session = self._restore_session()
                try:
                    await handler(AuthEvent.INITIAL_SESSION, session)
                except Exception:
                    logger.exception("session_handler_error", auth_event=AuthEvent.INITIAL_SESSION.value)

        self._schedule(_emit_initial())
        return subscription

    # Records

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
        single: bool = False,
    ) -> GatewayResponse:
        params: dict[str, Any] = {"select": columns}
        for key, value in (filters or {}).items():
            params[key] = f"eq.{value}"
        if limit is not None:
            params["limit"] = limit
        if order:
            params["order"] = order
        headers = {"Accept": PGRST_OBJECT} if single else None
        return await self._request("GET", f"/rest/v1/{table}", params=params, headers=headers)

    async def insert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str | None = None,
        ignore_duplicates: bool = False,
    ) -> GatewayResponse:
        prefer = "return=representation"
        if ignore_duplicates:
            prefer += ",resolution=ignore-duplicates"
        params = {"on_conflict": on_conflict} if on_conflict else None
        return await self._request(
            "POST",
            f"/rest/v1/{table}",
            params=params,
            json=rows if isinstance(rows, list) else [rows],
            headers={"Prefer": prefer},
        )

    async def upsert(
        self, table: str, row: dict[str, Any], *, on_conflict: str | None = None
    ) -> GatewayResponse:
        params = {"on_conflict": on_conflict} if on_conflict else None
        return await self._request(
            "POST",
            f"/rest/v1/{table}",
            params=params,
            json=row,
            headers={
                "Prefer": "return=representation,resolution=merge-duplicates",
                "Accept": PGRST_OBJECT,
            },
        )

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, Any]
    ) -> GatewayResponse:
        params = {key: f"eq.{value}" for key, value in filters.items()}
        return await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=params,
            json=values,
            headers={"Prefer": "return=representation"},
        )

    # Object storage

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> GatewayResponse:
        return await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
        )

    async def remove(self, bucket: str, paths: list[str]) -> GatewayResponse:
        return await self._request(
            "DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": paths}
        )

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    async def aclose(self) -> None:
        await super().aclose()
        await self.client.aclose()
