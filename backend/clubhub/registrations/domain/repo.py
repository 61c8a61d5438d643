"""Async repository helpers for event registrations."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

import asyncpg

from clubhub.registrations.domain import models
from clubhub.registrations.domain.exceptions import AlreadyRegisteredError

USER_EVENT_CONSTRAINT = "event_registration_user_event_key"
CHECK_IN_CODE_CONSTRAINT = "event_registration_check_in_code_key"

_CAPACITY_STATUSES = [status.value for status in models.CAPACITY_STATUSES]

_EVENT_COLUMNS = """
	id, title, starts_at, venue, max_participants, current_participants,
	registration_start_date, registration_end_date, registration_fee,
	organizer_ids, is_active
"""


class CheckInCodeCollision(Exception):
	"""The generated check-in code is already taken."""


def _registration_with_extras(row: asyncpg.Record, *extras: str) -> tuple[models.Registration, dict[str, Any]]:
	data = dict(row)
	picked = {key: data.pop(key, None) for key in extras}
	return models.Registration.from_record(data), picked


class RegistrationRepository:
	"""Thin data-access layer around asyncpg.

	Every method takes the caller's connection so multi-step operations run
	inside one transaction.
	"""

	# --- Event catalog (read + cached counter) ---------------------------

	async def get_event(
		self,
		conn: asyncpg.Connection,
		event_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Event | None:
		query = f"SELECT {_EVENT_COLUMNS} FROM club_event WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"
		row = await conn.fetchrow(query, event_id)
		return models.Event.model_validate(dict(row)) if row else None

	async def recount_participants(self, conn: asyncpg.Connection, event_id: UUID) -> tuple[int, int] | None:
		"""Overwrite the cached counter with the live count.

		Returns ``(live, previous_cached)`` or None when the event is gone.
		"""
		row = await conn.fetchrow(
			"""
			WITH live AS (
				SELECT COUNT(*)::int AS n
				FROM event_registration
				WHERE event_id=$1 AND status = ANY($2::text[])
			),
			prev AS (
				SELECT current_participants FROM club_event WHERE id=$1
			)
			UPDATE club_event e
			SET current_participants = live.n,
				updated_at = NOW()
			FROM live, prev
			WHERE e.id=$1
			RETURNING live.n AS live, prev.current_participants AS previous
			""",
			event_id,
			_CAPACITY_STATUSES,
		)
		if not row:
			return None
		return int(row["live"]), int(row["previous"])

	async def list_drifted_events(self, conn: asyncpg.Connection, *, limit: int) -> list[UUID]:
		rows = await conn.fetch(
			"""
			SELECT e.id
			FROM club_event e
			LEFT JOIN (
				SELECT event_id, COUNT(*)::int AS n
				FROM event_registration
				WHERE status = ANY($1::text[])
				GROUP BY event_id
			) live ON live.event_id = e.id
			WHERE e.current_participants <> COALESCE(live.n, 0)
			ORDER BY e.updated_at ASC
			LIMIT $2
			""",
			_CAPACITY_STATUSES,
			limit,
		)
		return [UUID(str(row["id"])) for row in rows]

	# --- Registration reads ----------------------------------------------

	async def get_registration(
		self,
		conn: asyncpg.Connection,
		registration_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Registration | None:
		query = "SELECT * FROM event_registration WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"
		row = await conn.fetchrow(query, registration_id)
		return models.Registration.from_record(row) if row else None

	async def get_registration_by_code(self, conn: asyncpg.Connection, code: str) -> models.Registration | None:
		row = await conn.fetchrow("SELECT * FROM event_registration WHERE check_in_code=$1", code)
		return models.Registration.from_record(row) if row else None

	async def get_registration_for_user(
		self,
		conn: asyncpg.Connection,
		*,
		event_id: UUID,
		user_id: UUID,
	) -> models.Registration | None:
		row = await conn.fetchrow(
			"SELECT * FROM event_registration WHERE event_id=$1 AND user_id=$2",
			event_id,
			user_id,
		)
		return models.Registration.from_record(row) if row else None

	async def count_capacity_holders(self, conn: asyncpg.Connection, event_id: UUID) -> int:
		value = await conn.fetchval(
			"SELECT COUNT(*) FROM event_registration WHERE event_id=$1 AND status = ANY($2::text[])",
			event_id,
			_CAPACITY_STATUSES,
		)
		return int(value or 0)

	async def next_waitlisted(self, conn: asyncpg.Connection, event_id: UUID) -> models.Registration | None:
		row = await conn.fetchrow(
			"""
			SELECT * FROM event_registration
			WHERE event_id=$1 AND status='waitlist'
			ORDER BY registered_at ASC, id ASC
			LIMIT 1
			FOR UPDATE
			""",
			event_id,
		)
		return models.Registration.from_record(row) if row else None

	async def get_participant(self, conn: asyncpg.Connection, user_id: UUID) -> models.Participant | None:
		row = await conn.fetchrow("SELECT id, display_name AS name, email FROM app_user WHERE id=$1", user_id)
		return models.Participant.model_validate(dict(row)) if row else None

	async def list_user_registrations(
		self,
		conn: asyncpg.Connection,
		user_id: UUID,
		*,
		status: str | None,
		limit: int,
		offset: int,
	) -> tuple[list[tuple[models.Registration, dict[str, Any]]], int]:
		params: list[object] = [user_id]
		where = ["r.user_id=$1"]
		if status:
			params.append(status)
			where.append(f"r.status=${len(params)}")
		total = await conn.fetchval(
			"SELECT COUNT(*) FROM event_registration r WHERE {where}".format(where=" AND ".join(where)),
			*params,
		)
		params.extend([limit, offset])
		rows = await conn.fetch(
			"""
			SELECT r.*, e.title AS event_title, e.starts_at AS event_starts_at, e.venue AS event_venue
			FROM event_registration r
			JOIN club_event e ON e.id = r.event_id
			WHERE {where}
			ORDER BY r.registered_at DESC
			LIMIT ${limit_idx} OFFSET ${offset_idx}
			""".format(where=" AND ".join(where), limit_idx=len(params) - 1, offset_idx=len(params)),
			*params,
		)
		items = [_registration_with_extras(row, "event_title", "event_starts_at", "event_venue") for row in rows]
		return items, int(total or 0)

	async def list_event_registrations(
		self,
		conn: asyncpg.Connection,
		event_id: UUID,
		*,
		status: str | None,
		limit: int | None,
		offset: int = 0,
	) -> tuple[list[tuple[models.Registration, dict[str, Any]]], int]:
		"""Registrations for an event, newest first; ``limit=None`` returns all."""
		params: list[object] = [event_id]
		where = ["r.event_id=$1"]
		if status:
			params.append(status)
			where.append(f"r.status=${len(params)}")
		total = await conn.fetchval(
			"SELECT COUNT(*) FROM event_registration r WHERE {where}".format(where=" AND ".join(where)),
			*params,
		)
		paging = ""
		if limit is not None:
			params.extend([limit, offset])
			paging = f"LIMIT ${len(params) - 1} OFFSET ${len(params)}"
		rows = await conn.fetch(
			"""
			SELECT r.*, u.display_name AS participant_name, u.email AS participant_email
			FROM event_registration r
			LEFT JOIN app_user u ON u.id = r.user_id
			WHERE {where}
			ORDER BY r.registered_at DESC
			{paging}
			""".format(where=" AND ".join(where), paging=paging),
			*params,
		)
		items = [_registration_with_extras(row, "participant_name", "participant_email") for row in rows]
		return items, int(total or 0)

	async def list_status_rows(self, conn: asyncpg.Connection, event_id: UUID) -> list[tuple[str, datetime]]:
		rows = await conn.fetch(
			"SELECT status, registered_at FROM event_registration WHERE event_id=$1",
			event_id,
		)
		return [(row["status"], row["registered_at"]) for row in rows]

	# --- Registration writes ---------------------------------------------

	async def insert_registration(
		self,
		conn: asyncpg.Connection,
		*,
		event_id: UUID,
		user_id: UUID,
		status: models.RegistrationStatus,
		contact_info: models.ContactInfo,
		additional_info: models.AdditionalInfo,
		payment_amount: Decimal,
		payment_status: models.PaymentStatus,
		check_in_code: str,
		notes: str | None,
		source: models.RegistrationSource,
	) -> models.Registration:
		"""Insert inside a savepoint so a code collision leaves the transaction usable.

		Raises:
			AlreadyRegisteredError: another registration for (user, event) won the race.
			CheckInCodeCollision: the code is taken; retry with a fresh one.
		"""
		try:
			async with conn.transaction():
				row = await conn.fetchrow(
					"""
					INSERT INTO event_registration (
						event_id, user_id, status, contact_info, additional_info,
						payment_amount, payment_status, check_in_code, notes, source,
						confirmed_at
					)
					VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
						CASE WHEN $3 = 'confirmed' THEN NOW() ELSE NULL END)
					RETURNING *
					""",
					event_id,
					user_id,
					status.value,
					contact_info.model_dump(mode="json", exclude_none=True),
					additional_info.model_dump(mode="json", exclude_none=True),
					payment_amount,
					payment_status.value,
					check_in_code,
					notes,
					source.value,
				)
		except asyncpg.exceptions.UniqueViolationError as exc:
			if exc.constraint_name == CHECK_IN_CODE_CONSTRAINT:
				raise CheckInCodeCollision(check_in_code) from exc
			if exc.constraint_name == USER_EVENT_CONSTRAINT:
				raise AlreadyRegisteredError() from exc
			raise
		return models.Registration.from_record(row)

	async def transition_status(
		self,
		conn: asyncpg.Connection,
		*,
		registration_id: UUID,
		target: models.RegistrationStatus,
		sources: Sequence[models.RegistrationStatus],
		note: Optional[models.AdminNote] = None,
	) -> tuple[models.Registration, models.RegistrationStatus] | None:
		"""Apply ``target`` only if the current status is one of ``sources``.

		Returns ``(updated, previous_status)`` or None when the guard failed
		(or the row does not exist). Timestamps are only set the first time.
		"""
		notes_patch = [note.model_dump(mode="json")] if note is not None else None
		row = await conn.fetchrow(
			"""
			WITH prev AS (
				SELECT id, status FROM event_registration WHERE id=$1 FOR UPDATE
			)
			UPDATE event_registration r
			SET status = $2,
				confirmed_at = CASE WHEN $2 = 'confirmed' THEN COALESCE(r.confirmed_at, NOW()) ELSE r.confirmed_at END,
				cancelled_at = CASE WHEN $2 = 'cancelled' THEN COALESCE(r.cancelled_at, NOW()) ELSE r.cancelled_at END,
				attended_at = CASE WHEN $2 = 'attended' THEN COALESCE(r.attended_at, NOW()) ELSE r.attended_at END,
				admin_notes = CASE WHEN $4::jsonb IS NULL THEN r.admin_notes ELSE r.admin_notes || $4::jsonb END,
				updated_at = NOW()
			FROM prev
			WHERE r.id = prev.id AND prev.status = ANY($3::text[])
			RETURNING r.*, prev.status AS previous_status
			""",
			registration_id,
			target.value,
			[source.value for source in sources],
			notes_patch,
		)
		if not row:
			return None
		registration, extras = _registration_with_extras(row, "previous_status")
		return registration, models.RegistrationStatus(extras["previous_status"])

	async def update_details(
		self,
		conn: asyncpg.Connection,
		registration_id: UUID,
		*,
		contact_info: models.ContactInfo,
		additional_info: models.AdditionalInfo,
		note: Optional[models.AdminNote] = None,
	) -> models.Registration | None:
		notes_patch = [note.model_dump(mode="json")] if note is not None else None
		row = await conn.fetchrow(
			"""
			UPDATE event_registration
			SET contact_info = $2,
				additional_info = $3,
				admin_notes = CASE WHEN $4::jsonb IS NULL THEN admin_notes ELSE admin_notes || $4::jsonb END,
				updated_at = NOW()
			WHERE id=$1
			RETURNING *
			""",
			registration_id,
			contact_info.model_dump(mode="json", exclude_none=True),
			additional_info.model_dump(mode="json", exclude_none=True),
			notes_patch,
		)
		return models.Registration.from_record(row) if row else None

	async def mark_payment_completed(
		self,
		conn: asyncpg.Connection,
		registration_id: UUID,
		*,
		transaction_id: str | None,
		payment_method: str | None,
	) -> models.Registration | None:
		row = await conn.fetchrow(
			"""
			UPDATE event_registration
			SET payment_status = 'completed',
				payment_transaction_id = COALESCE($2, payment_transaction_id),
				payment_method = COALESCE($3, payment_method),
				paid_at = COALESCE(paid_at, NOW()),
				updated_at = NOW()
			WHERE id=$1
			RETURNING *
			""",
			registration_id,
			transaction_id,
			payment_method,
		)
		return models.Registration.from_record(row) if row else None

	# --- Outbox -----------------------------------------------------------

	async def enqueue_outbox(
		self,
		conn: asyncpg.Connection,
		*,
		aggregate_type: str,
		aggregate_id: UUID,
		event_type: str,
		payload: dict,
	) -> None:
		await conn.execute(
			"""
			INSERT INTO outbox_event (aggregate_type, aggregate_id, event_type, payload)
			VALUES ($1, $2, $3, $4)
			""",
			aggregate_type,
			aggregate_id,
			event_type,
			payload,
		)
