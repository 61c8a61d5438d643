from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Iterator
from uuid import UUID, uuid4

import asyncpg
import pytest
import pytest_asyncio

from clubhub.infra import postgres
from clubhub.infra.auth import AuthenticatedUser
from clubhub.infra.postgres import run_in_transaction
from clubhub.registrations.domain import models, repo as repo_module
from clubhub.registrations.domain.exceptions import AlreadyCheckedInError, AlreadyRegisteredError
from clubhub.registrations.domain.rsvp_service import RSVPService
from clubhub.registrations.schemas import dto

pytestmark = pytest.mark.asyncio

REPO_ROOT = Path(__file__).resolve().parents[3]

MIGRATIONS_DIR = REPO_ROOT / "infra/migrations"


@pytest.fixture(scope="module")
def postgres_container() -> Iterator["PostgresContainer"]:
    testcontainers = pytest.importorskip(
        "testcontainers.postgres",
        reason="testcontainers.postgres is required for integration tests",
    )
    PostgresContainer = testcontainers.PostgresContainer
    container = PostgresContainer("postgres:16-alpine")
    try:
        container.start()
    except Exception as exc:  # pragma: no cover - environment without docker
        pytest.skip(f"unable to start postgres container: {exc}")
    try:
        yield container
    finally:
        container.stop()


async def _run_migrations(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("DROP SCHEMA IF EXISTS public CASCADE")
        await conn.execute("CREATE SCHEMA public")
        await conn.execute("GRANT ALL ON SCHEMA public TO PUBLIC")
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            await conn.execute(path.read_text(encoding="utf-8"))


@pytest_asyncio.fixture(scope="function")
async def postgres_pool(postgres_container) -> AsyncIterator[asyncpg.Pool]:
    url = postgres_container.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    pool = await asyncpg.create_pool(dsn=url, min_size=1, max_size=8, init=postgres.init_connection)
    await _run_migrations(pool)
    postgres.set_pool(pool)
    try:
        yield pool
    finally:
        postgres.set_pool(None)
        await pool.close()


async def _create_event(pool: asyncpg.Pool, *, max_participants: int | None, fee: str = "0") -> UUID:
    now = datetime.now(timezone.utc)
    async with pool.acquire() as conn:
        return await conn.fetchval(
            """
            INSERT INTO club_event (title, max_participants, registration_start_date, registration_end_date, registration_fee)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id
            """,
            "Integration Night",
            max_participants,
            now - timedelta(days=1),
            now + timedelta(days=1),
            Decimal(fee),
        )


def _payload(event_id: UUID, email: str) -> dto.RegistrationCreateRequest:
    return dto.RegistrationCreateRequest(event_id=event_id, contact_info=models.ContactInfo(email=email))


@pytest.mark.integration
async def test_concurrent_admissions_respect_capacity(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=3)
    service = RSVPService()

    results = await asyncio.gather(
        *(
            service.register(AuthenticatedUser(id=str(uuid4())), _payload(event_id, f"c{i}@example.com"))
            for i in range(8)
        )
    )

    statuses = sorted(result.registration.status.value for result in results)
    assert statuses.count("confirmed") == 3
    assert statuses.count("waitlist") == 5
    async with postgres_pool.acquire() as conn:
        counter = await conn.fetchval("SELECT current_participants FROM club_event WHERE id=$1", event_id)
        outbox = await conn.fetchval("SELECT COUNT(*) FROM outbox_event WHERE event_type='registration.created'")
    assert counter == 3
    assert outbox == 8


@pytest.mark.integration
async def test_unique_pair_is_enforced_by_the_database(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=None)
    repo = repo_module.RegistrationRepository()
    user_id = uuid4()

    async def _insert(conn, code):
        return await repo.insert_registration(
            conn,
            event_id=event_id,
            user_id=user_id,
            status=models.RegistrationStatus.CONFIRMED,
            contact_info=models.ContactInfo(email="dup@example.com"),
            additional_info=models.AdditionalInfo(),
            payment_amount=Decimal("0"),
            payment_status=models.PaymentStatus.COMPLETED,
            check_in_code=code,
            notes=None,
            source=models.RegistrationSource.WEBSITE,
        )

    first = await run_in_transaction(lambda conn: _insert(conn, "AAAA22"), name="test")
    assert first.confirmed_at is not None
    with pytest.raises(AlreadyRegisteredError):
        await run_in_transaction(lambda conn: _insert(conn, "BBBB22"), name="test")


@pytest.mark.integration
async def test_check_in_code_collision_is_detected(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=None)
    repo = repo_module.RegistrationRepository()

    async def _insert(conn, user_id):
        return await repo.insert_registration(
            conn,
            event_id=event_id,
            user_id=user_id,
            status=models.RegistrationStatus.PENDING,
            contact_info=models.ContactInfo(email="code@example.com"),
            additional_info=models.AdditionalInfo(),
            payment_amount=Decimal("0"),
            payment_status=models.PaymentStatus.PENDING,
            check_in_code="SAME22",
            notes=None,
            source=models.RegistrationSource.WEBSITE,
        )

    await run_in_transaction(lambda conn: _insert(conn, uuid4()), name="test")
    with pytest.raises(repo_module.CheckInCodeCollision):
        await run_in_transaction(lambda conn: _insert(conn, uuid4()), name="test")


@pytest.mark.integration
async def test_conditional_transition_is_a_no_op_on_stale_source(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=5)
    service = RSVPService()
    created = await service.register(AuthenticatedUser(id=str(uuid4())), _payload(event_id, "t@example.com"))
    repo = repo_module.RegistrationRepository()
    registration_id = created.registration.id

    async def _attend(conn):
        return await repo.transition_status(
            conn,
            registration_id=registration_id,
            target=models.RegistrationStatus.ATTENDED,
            sources=[models.RegistrationStatus.CONFIRMED],
        )

    applied = await run_in_transaction(_attend, name="test")
    assert applied is not None
    registration, previous = applied
    assert previous is models.RegistrationStatus.CONFIRMED
    assert registration.attended_at is not None
    assert registration.confirmed_at == created.registration.confirmed_at

    assert await run_in_transaction(_attend, name="test") is None


@pytest.mark.integration
async def test_concurrent_check_ins_succeed_once(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=5)
    service = RSVPService()
    created = await service.register(AuthenticatedUser(id=str(uuid4())), _payload(event_id, "door@example.com"))
    admin = AuthenticatedUser(id=str(uuid4()), roles=("admin",))
    request = dto.CheckInRequest(check_in_code=created.registration.check_in_code)

    results = await asyncio.gather(
        *(service.check_in(admin, created.registration.id, request) for _ in range(4)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, dto.CheckInResponse) for r in results) == 1
    assert sum(isinstance(r, AlreadyCheckedInError) for r in results) == 3


@pytest.mark.integration
async def test_cancel_promotes_oldest_waitlisted_and_reconciles(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=1)
    service = RSVPService()
    holder = AuthenticatedUser(id=str(uuid4()))
    held = await service.register(holder, _payload(event_id, "holder@example.com"))
    waiting = [
        await service.register(AuthenticatedUser(id=str(uuid4())), _payload(event_id, f"w{i}@example.com"))
        for i in range(3)
    ]

    result = await service.cancel_registration(holder, held.registration.id)

    assert result.promoted_registration_id == waiting[0].registration.id
    async with postgres_pool.acquire() as conn:
        counter = await conn.fetchval("SELECT current_participants FROM club_event WHERE id=$1", event_id)
        drifted = await repo_module.RegistrationRepository().list_drifted_events(conn, limit=10)
    assert counter == 1
    assert drifted == []


@pytest.mark.integration
async def test_listing_and_recount_queries(postgres_pool):
    event_id = await _create_event(postgres_pool, max_participants=10, fee="15.00")
    service = RSVPService()
    user = AuthenticatedUser(id=str(uuid4()))
    await service.register(user, _payload(event_id, "list@example.com"))
    repo = repo_module.RegistrationRepository()

    async with postgres_pool.acquire() as conn:
        await conn.execute("UPDATE club_event SET current_participants = 4 WHERE id=$1", event_id)
        items, total = await repo.list_user_registrations(conn, UUID(user.id), status=None, limit=10, offset=0)
        event_items, event_total = await repo.list_event_registrations(conn, event_id, status="pending", limit=None)
        drifted = await repo.list_drifted_events(conn, limit=10)

    assert total == 1
    assert items[0][1]["event_title"] == "Integration Night"
    assert items[0][0].payment.amount == 15
    assert event_total == 1
    assert len(event_items) == 1
    assert drifted == [event_id]

    async def _recount(conn):
        await repo.get_event(conn, event_id, for_update=True)
        return await repo.recount_participants(conn, event_id)

    assert await run_in_transaction(_recount, name="test") == (0, 4)
