import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-registrations-0123456789")
os.environ.setdefault("RECONCILE_ENABLED", "false")

import asyncio
import itertools
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import asyncpg
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from clubhub.infra import postgres
from clubhub.main import app
from clubhub.registrations.domain import models
from clubhub.registrations.domain.exceptions import AlreadyRegisteredError
from clubhub.registrations.domain.repo import CheckInCodeCollision
from clubhub.registrations.domain.rsvp_service import RSVPService
from clubhub.settings import settings


class _FakeTransaction:
	"""Transaction or savepoint; rolls back its own writes when the block raises."""

	def __init__(self, conn: "_FakeConnection") -> None:
		self._conn = conn

	async def __aenter__(self):
		self._conn._undo.append([])
		return self

	async def __aexit__(self, exc_type, exc, tb):
		undo = self._conn._undo.pop()
		if exc_type is not None:
			for action in reversed(undo):
				action()
		elif self._conn._undo:
			self._conn._undo[-1].extend(undo)
		if not self._conn._undo:
			self._conn.release_locks()
		return False


class _FakeConnection:
	def __init__(self, store: "_InMemoryRegistrations") -> None:
		self._store = store
		self._undo: list[list[Any]] = []
		self._held: list[tuple[str, UUID]] = []
		self.executed: list[str] = []

	def transaction(self):
		return _FakeTransaction(self)

	async def execute(self, query: str, *args):
		self.executed.append(query)
		return "OK"

	async def fetchval(self, query: str, *args):
		self.executed.append(query)
		if "schema_migrations" in query:
			return self._store.schema_version
		return None

	def record_undo(self, action) -> None:
		if self._undo:
			self._undo[-1].append(action)

	async def lock(self, key: tuple[str, UUID]) -> None:
		"""Row lock held until the outermost transaction ends, like SELECT ... FOR UPDATE."""
		if key in self._held:
			return
		await self._store.lock_for(key).acquire()
		self._held.append(key)

	def release_locks(self) -> None:
		while self._held:
			self._store.lock_for(self._held.pop()).release()


class _FakePool:
	def __init__(self, store: "_InMemoryRegistrations") -> None:
		self._store = store

	@asynccontextmanager
	async def acquire(self):
		conn = _FakeConnection(self._store)
		try:
			yield conn
		finally:
			conn.release_locks()


class _InMemoryRegistrations:
	"""Dict-backed RegistrationRepository with row locks, unique keys and rollback.

	Every read yields to the event loop so concurrent tasks interleave the
	way separate request handlers would.
	"""

	def __init__(self) -> None:
		self.events: dict[UUID, dict[str, Any]] = {}
		self.registrations: dict[UUID, dict[str, Any]] = {}
		self.users: dict[UUID, dict[str, Any]] = {}
		self.outbox: list[dict[str, Any]] = []
		self.fail_recount = False
		self.schema_version = "0001"
		self._locks: dict[tuple[str, UUID], asyncio.Lock] = {}
		self._base = datetime.now(timezone.utc)
		self._ticks = itertools.count(1)

	# --- test helpers ---------------------------------------------------

	def now(self) -> datetime:
		return self._base + timedelta(milliseconds=next(self._ticks))

	def lock_for(self, key: tuple[str, UUID]) -> asyncio.Lock:
		return self._locks.setdefault(key, asyncio.Lock())

	def add_event(
		self,
		*,
		max_participants: int | None = None,
		fee: float | int = 0,
		opens: datetime | None = None,
		closes: datetime | None = None,
		organizer_ids=(),
		is_active: bool = True,
		title: str = "Hack Night",
	) -> UUID:
		now = datetime.now(timezone.utc)
		event_id = uuid4()
		self.events[event_id] = {
			"id": event_id,
			"title": title,
			"starts_at": now + timedelta(days=7),
			"venue": "Main Hall",
			"max_participants": max_participants,
			"current_participants": 0,
			"registration_start_date": opens or now - timedelta(days=1),
			"registration_end_date": closes or now + timedelta(days=1),
			"registration_fee": Decimal(str(fee)),
			"organizer_ids": [UUID(str(uid)) for uid in organizer_ids],
			"is_active": is_active,
		}
		return event_id

	def add_user(self, name: str = "Ada", email: str = "ada@example.com") -> UUID:
		user_id = uuid4()
		self.users[user_id] = {"id": user_id, "name": name, "email": email}
		return user_id

	def status_of(self, registration_id: UUID) -> str:
		return self.registrations[registration_id]["status"]

	def live_count(self, event_id: UUID) -> int:
		return sum(
			1
			for row in self.registrations.values()
			if row["event_id"] == event_id and row["status"] in ("confirmed", "attended")
		)

	def counter(self, event_id: UUID) -> int:
		return self.events[event_id]["current_participants"]

	def _update(self, conn, table: dict, key: UUID, **changes) -> dict[str, Any]:
		before = table[key]
		table[key] = {**before, **changes}
		conn.record_undo(lambda: table.__setitem__(key, before))
		return table[key]

	# --- event catalog ---------------------------------------------------

	async def get_event(self, conn, event_id: UUID, *, for_update: bool = False):
		if for_update:
			await conn.lock(("event", event_id))
		await asyncio.sleep(0)
		row = self.events.get(event_id)
		return models.Event.model_validate(dict(row)) if row else None

	async def recount_participants(self, conn, event_id: UUID):
		await asyncio.sleep(0)
		if self.fail_recount:
			raise asyncpg.PostgresError("counter write failed")
		row = self.events.get(event_id)
		if row is None:
			return None
		previous = row["current_participants"]
		live = self.live_count(event_id)
		self._update(conn, self.events, event_id, current_participants=live)
		return live, previous

	async def list_drifted_events(self, conn, *, limit: int):
		await asyncio.sleep(0)
		drifted = [
			event_id for event_id, row in self.events.items() if row["current_participants"] != self.live_count(event_id)
		]
		return drifted[:limit]

	# --- registration reads ---------------------------------------------

	async def get_registration(self, conn, registration_id: UUID, *, for_update: bool = False):
		if for_update:
			await conn.lock(("registration", registration_id))
		await asyncio.sleep(0)
		row = self.registrations.get(registration_id)
		return models.Registration.from_record(dict(row)) if row else None

	async def get_registration_by_code(self, conn, code: str):
		await asyncio.sleep(0)
		for row in self.registrations.values():
			if row["check_in_code"] == code:
				return models.Registration.from_record(dict(row))
		return None

	async def get_registration_for_user(self, conn, *, event_id: UUID, user_id: UUID):
		await asyncio.sleep(0)
		for row in self.registrations.values():
			if row["event_id"] == event_id and row["user_id"] == user_id:
				return models.Registration.from_record(dict(row))
		return None

	async def count_capacity_holders(self, conn, event_id: UUID) -> int:
		await asyncio.sleep(0)
		return self.live_count(event_id)

	async def next_waitlisted(self, conn, event_id: UUID):
		await asyncio.sleep(0)
		rows = sorted(
			(row for row in self.registrations.values() if row["event_id"] == event_id and row["status"] == "waitlist"),
			key=lambda row: (row["registered_at"], str(row["id"])),
		)
		if not rows:
			return None
		await conn.lock(("registration", rows[0]["id"]))
		return models.Registration.from_record(dict(rows[0]))

	async def get_participant(self, conn, user_id: UUID):
		row = self.users.get(user_id)
		return models.Participant.model_validate(row) if row else None

	async def list_user_registrations(self, conn, user_id: UUID, *, status, limit: int, offset: int):
		rows = [
			row
			for row in self.registrations.values()
			if row["user_id"] == user_id and (status is None or row["status"] == status)
		]
		rows.sort(key=lambda row: row["registered_at"], reverse=True)
		items = []
		for row in rows[offset : offset + limit]:
			event = self.events[row["event_id"]]
			items.append(
				(
					models.Registration.from_record(dict(row)),
					{"event_title": event["title"], "event_starts_at": event["starts_at"], "event_venue": event["venue"]},
				)
			)
		return items, len(rows)

	async def list_event_registrations(self, conn, event_id: UUID, *, status, limit, offset: int = 0):
		rows = [
			row
			for row in self.registrations.values()
			if row["event_id"] == event_id and (status is None or row["status"] == status)
		]
		rows.sort(key=lambda row: row["registered_at"], reverse=True)
		page = rows if limit is None else rows[offset : offset + limit]
		items = []
		for row in page:
			user = self.users.get(row["user_id"], {})
			items.append(
				(
					models.Registration.from_record(dict(row)),
					{"participant_name": user.get("name"), "participant_email": user.get("email")},
				)
			)
		return items, len(rows)

	async def list_status_rows(self, conn, event_id: UUID):
		return [
			(row["status"], row["registered_at"]) for row in self.registrations.values() if row["event_id"] == event_id
		]

	# --- registration writes ---------------------------------------------

	async def insert_registration(
		self,
		conn,
		*,
		event_id,
		user_id,
		status,
		contact_info,
		additional_info,
		payment_amount,
		payment_status,
		check_in_code,
		notes,
		source,
	):
		await asyncio.sleep(0)
		if any(row["check_in_code"] == check_in_code for row in self.registrations.values()):
			raise CheckInCodeCollision(check_in_code)
		if any(row["event_id"] == event_id and row["user_id"] == user_id for row in self.registrations.values()):
			raise AlreadyRegisteredError()
		now = self.now()
		registration_id = uuid4()
		self.registrations[registration_id] = {
			"id": registration_id,
			"event_id": event_id,
			"user_id": user_id,
			"status": status.value,
			"contact_info": contact_info.model_dump(mode="json", exclude_none=True),
			"additional_info": additional_info.model_dump(mode="json", exclude_none=True),
			"payment_amount": payment_amount,
			"payment_status": payment_status.value,
			"payment_transaction_id": None,
			"payment_method": None,
			"paid_at": None,
			"check_in_code": check_in_code,
			"registered_at": now,
			"confirmed_at": now if status is models.RegistrationStatus.CONFIRMED else None,
			"cancelled_at": None,
			"attended_at": None,
			"admin_notes": [],
			"notes": notes,
			"source": source.value,
			"updated_at": now,
		}
		conn.record_undo(lambda: self.registrations.pop(registration_id, None))
		return models.Registration.from_record(dict(self.registrations[registration_id]))

	async def transition_status(self, conn, *, registration_id, target, sources, note=None):
		await conn.lock(("registration", registration_id))
		row = self.registrations.get(registration_id)
		if row is None or row["status"] not in {source.value for source in sources}:
			return None
		now = self.now()
		changes: dict[str, Any] = {"status": target.value, "updated_at": now}
		for status_value, column in (
			("confirmed", "confirmed_at"),
			("cancelled", "cancelled_at"),
			("attended", "attended_at"),
		):
			if target.value == status_value and row[column] is None:
				changes[column] = now
		if note is not None:
			changes["admin_notes"] = [*row["admin_notes"], note.model_dump(mode="json")]
		previous = row["status"]
		updated = self._update(conn, self.registrations, registration_id, **changes)
		return models.Registration.from_record(dict(updated)), models.RegistrationStatus(previous)

	async def update_details(self, conn, registration_id, *, contact_info, additional_info, note=None):
		row = self.registrations.get(registration_id)
		if row is None:
			return None
		changes: dict[str, Any] = {
			"contact_info": contact_info.model_dump(mode="json", exclude_none=True),
			"additional_info": additional_info.model_dump(mode="json", exclude_none=True),
			"updated_at": self.now(),
		}
		if note is not None:
			changes["admin_notes"] = [*row["admin_notes"], note.model_dump(mode="json")]
		updated = self._update(conn, self.registrations, registration_id, **changes)
		return models.Registration.from_record(dict(updated))

	async def mark_payment_completed(self, conn, registration_id, *, transaction_id, payment_method):
		row = self.registrations.get(registration_id)
		if row is None:
			return None
		updated = self._update(
			conn,
			self.registrations,
			registration_id,
			payment_status="completed",
			payment_transaction_id=transaction_id or row["payment_transaction_id"],
			payment_method=payment_method or row["payment_method"],
			paid_at=row["paid_at"] or self.now(),
		)
		return models.Registration.from_record(dict(updated))

	async def enqueue_outbox(self, conn, *, aggregate_type, aggregate_id, event_type, payload):
		entry = {
			"aggregate_type": aggregate_type,
			"aggregate_id": aggregate_id,
			"event_type": event_type,
			"payload": payload,
		}
		self.outbox.append(entry)
		conn.record_undo(lambda: self.outbox.remove(entry))


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from clubhub.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id/X-User-Roles headers, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	original_delay = settings.db_retry_base_delay_seconds
	settings.environment = "dev"
	settings.db_retry_base_delay_seconds = 0.0
	try:
		yield
	finally:
		settings.environment = original_env
		settings.db_retry_base_delay_seconds = original_delay


@pytest.fixture
def registrations_db():
	"""In-memory registration store wired in as the Postgres pool."""
	store = _InMemoryRegistrations()
	postgres.set_pool(_FakePool(store))  # type: ignore[arg-type]
	try:
		yield store
	finally:
		postgres.set_pool(None)


@pytest.fixture
def rsvp_service(registrations_db):
	return RSVPService(registrations_db)  # type: ignore[arg-type]


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
