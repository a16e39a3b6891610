"""Shared fixtures: an in-memory backend gateway and a temp local-flag store."""

import asyncio
import uuid
from collections import defaultdict
from typing import Any

import pytest

from myedupro.auth.orchestrator import SessionOrchestrator
from myedupro.backend.errors import BackendError, ErrorKind
from myedupro.backend.gateway import BackendGateway, GatewayResponse
from myedupro.models.auth import AuthEvent, Session, UserIdentity
from myedupro.storage.local_state import LocalStateStore

UNIQUE_KEYS = {
    "user_profiles": ("id",),
    "user_progress_stats": ("user_id",),
    "subject_progress": ("user_id", "subject_name"),
    "user_databases": ("user_id",),
}


class FakeGateway(BackendGateway):
    """In-memory backend with per-operation failure injection and gates.

    ``failures`` maps an operation key (``"sign_in"``, ``"select:user_profiles"``)
    to the BackendError it should return. ``gates`` maps the same keys to
    events the first matching call waits on before answering.
    """

    def __init__(self) -> None:
        super().__init__()
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.accounts: dict[str, tuple[str, UserIdentity]] = {}
        self.session: Session | None = None
        self.failures: dict[str, BackendError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, Any]] = []
        self.uploads: dict[str, bytes] = {}

    async def _enter(self, key: str, payload: Any = None) -> GatewayResponse | None:
        self.calls.append((key, payload))
        gate = self.gates.pop(key, None)
        if gate is not None:
            await gate.wait()
        error = self.failures.get(key)
        if error is not None:
            return GatewayResponse(error=error)
        return None

    def add_user(self, email: str, password: str = "secret", **metadata: str) -> UserIdentity:
        user = UserIdentity(id=str(uuid.uuid4()), email=email, user_metadata=metadata)
        self.accounts[email] = (password, user)
        return user

    def make_session(self, user: UserIdentity) -> Session:
        return Session(access_token=f"token-{user.id}", refresh_token="refresh", user=user)

    async def emit(self, event: AuthEvent, session: Session | None) -> None:
        self.session = session
        await self._notify(event, session)

    # Identity

    async def get_current_session(self) -> GatewayResponse:
        failed = await self._enter("get_current_session")
        return failed or GatewayResponse(data=self.session)

    async def sign_up(self, email, password, metadata):
        failed = await self._enter("sign_up", email)
        if failed:
            return failed
        user = self.add_user(email, password, **metadata)
        # collaborator trigger: profile row seeded from sign-up metadata
        self.tables["user_profiles"].append({
            "id": user.id,
            "first_name": metadata.get("first_name", ""),
            "last_name": metadata.get("last_name", ""),
            "grade": "",
        })
        session = self.make_session(user)
        await self.emit(AuthEvent.SIGNED_IN, session)
        return GatewayResponse(data=session)

    async def sign_in(self, email, password):
        failed = await self._enter("sign_in", email)
        if failed:
            return failed
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            return GatewayResponse(
                error=BackendError(ErrorKind.INVALID, "Invalid login credentials", "invalid_credentials")
            )
        session = self.make_session(account[1])
        await self.emit(AuthEvent.SIGNED_IN, session)
        return GatewayResponse(data=session)

    async def sign_out(self):
        failed = await self._enter("sign_out")
        await self.emit(AuthEvent.SIGNED_OUT, None)
        return failed or GatewayResponse()

    # Records

    def _matching(self, table: str, filters: dict[str, Any] | None) -> list[dict[str, Any]]:
        return [
            row for row in self.tables[table]
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]

    def _conflict(self, table: str, row: dict[str, Any], on_conflict: str | None) -> dict | None:
        keys = tuple(on_conflict.split(",")) if on_conflict else UNIQUE_KEYS.get(table)
        if not keys:
            return None
        for existing in self.tables[table]:
            if all(existing.get(k) == row.get(k) for k in keys):
                return existing
        return None

    async def select(self, table, filters=None, *, columns="*", limit=None, order=None, single=False):
        failed = await self._enter(f"select:{table}", filters)
        if failed:
            return failed
        rows = [dict(r) for r in self._matching(table, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        if single:
            if len(rows) != 1:
                return GatewayResponse(
                    error=BackendError(ErrorKind.NOT_FOUND, "JSON object requested, multiple (or no) rows returned", "PGRST116")
                )
            return GatewayResponse(data=rows[0])
        return GatewayResponse(data=rows)

    async def insert(self, table, rows, *, on_conflict=None, ignore_duplicates=False):
        failed = await self._enter(f"insert:{table}", rows)
        if failed:
            return failed
        inserted = []
        for row in rows if isinstance(rows, list) else [rows]:
            if self._conflict(table, row, on_conflict) is not None:
                if ignore_duplicates:
                    continue
                return GatewayResponse(
                    error=BackendError(ErrorKind.INVALID, "duplicate key value violates unique constraint", "23505")
                )
            stored = {"id": str(uuid.uuid4()), **row}
            self.tables[table].append(stored)
            inserted.append(dict(stored))
        return GatewayResponse(data=inserted)

    async def upsert(self, table, row, *, on_conflict=None):
        failed = await self._enter(f"upsert:{table}", row)
        if failed:
            return failed
        existing = self._conflict(table, row, on_conflict)
        if existing is not None:
            existing.update(row)
            return GatewayResponse(data=dict(existing))
        stored = {"id": str(uuid.uuid4()), **row}
        self.tables[table].append(stored)
        return GatewayResponse(data=dict(stored))

    async def update(self, table, values, filters):
        failed = await self._enter(f"update:{table}", values)
        if failed:
            return failed
        matched = self._matching(table, filters)
        for row in matched:
            row.update(values)
        return GatewayResponse(data=[dict(r) for r in matched])

    # Object storage

    async def upload(self, bucket, path, content, *, content_type="application/octet-stream", upsert=True):
        failed = await self._enter(f"upload:{bucket}", path)
        if failed:
            return failed
        self.uploads[f"{bucket}/{path}"] = content
        return GatewayResponse(data={"Key": f"{bucket}/{path}"})

    async def remove(self, bucket, paths):
        for path in paths:
            self.uploads.pop(f"{bucket}/{path}", None)
        return GatewayResponse(data=[])

    def public_url(self, bucket, path):
        return f"https://backend.test/storage/v1/object/public/{bucket}/{path}"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def state_store(tmp_path):
    return LocalStateStore(tmp_path / "local_state.json")


@pytest.fixture
async def orchestrator(gateway, state_store):
    orch = SessionOrchestrator(
        gateway,
        state_store,
        session_check_timeout=0.2,
        default_subjects=["Mathematics", "Physics"],
    )
    yield orch
    await orch.close()
