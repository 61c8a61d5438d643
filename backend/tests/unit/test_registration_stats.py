from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from clubhub.infra.auth import ADMIN_ROLE, MODERATOR_ROLE, AuthenticatedUser
from clubhub.registrations.domain import models, stats
from clubhub.registrations.domain.exceptions import ForbiddenError
from clubhub.registrations.schemas import dto

ADMIN = AuthenticatedUser(id=str(uuid4()), roles=(ADMIN_ROLE,))


def test_summarize_statuses_counts_every_bucket():
	breakdown = stats.summarize_statuses(
		["pending", "confirmed", "confirmed", "waitlist", "attended", "no-show", models.RegistrationStatus.CANCELLED]
	)
	assert breakdown == stats.StatusBreakdown(
		total=7, pending=1, confirmed=2, cancelled=1, waitlist=1, attended=1, no_show=1
	)


def test_availability_counts_attended_as_holding_a_slot():
	breakdown = stats.StatusBreakdown(total=4, confirmed=2, attended=1, waitlist=1)
	availability = stats.compute_availability(3, breakdown)
	assert availability == stats.Availability(available=False, remaining=0, total=3, confirmed=3)


def test_availability_unlimited_event():
	availability = stats.compute_availability(None, stats.StatusBreakdown(confirmed=40))
	assert availability.available
	assert availability.remaining is None
	assert availability.total is None
	assert availability.confirmed == 40


def test_daily_trend_buckets_by_day_and_skips_old_entries():
	now = datetime(2024, 5, 31, 12, tzinfo=timezone.utc)
	timestamps = [
		now - timedelta(days=40),
		now - timedelta(days=2, hours=1),
		now - timedelta(days=2, hours=3),
		now - timedelta(hours=1),
	]
	trend = stats.daily_trend(timestamps, now)
	assert trend == [stats.DailyCount(date="2024-05-29", count=2), stats.DailyCount(date="2024-05-31", count=1)]


def test_daily_trend_empty():
	assert stats.daily_trend([], datetime.now(timezone.utc)) == []


@pytest.mark.asyncio
async def test_event_stats_reflect_live_registrations(registrations_db, rsvp_service):
	event_id = registrations_db.add_event(max_participants=2, fee=0, title="Chess Club Open")
	users = []
	for i in range(3):
		user = AuthenticatedUser(id=str(uuid4()))
		created = await rsvp_service.register(
			user,
			dto.RegistrationCreateRequest(event_id=event_id, contact_info=models.ContactInfo(email=f"p{i}@example.com")),
		)
		users.append((user, created.registration))

	response = await rsvp_service.event_stats(ADMIN, event_id)

	assert response.stats.total == 3
	assert response.stats.confirmed == 2
	assert response.stats.waitlist == 1
	assert response.availability.available is False
	assert response.availability.remaining == 0
	assert response.availability.total == 2
	assert response.event.title == "Chess Club Open"
	assert response.event.current_participants == 2
	assert sum(point.count for point in response.daily_trend) == 3

	body = response.model_dump(by_alias=True)
	assert set(body["stats"]) >= {"pending", "noShow", "waitlist"}
	assert body["event"]["maxParticipants"] == 2


@pytest.mark.asyncio
async def test_event_stats_require_event_management(registrations_db, rsvp_service):
	event_id = registrations_db.add_event(max_participants=2)
	moderator = AuthenticatedUser(id=str(uuid4()), roles=(MODERATOR_ROLE,))
	with pytest.raises(ForbiddenError):
		await rsvp_service.event_stats(moderator, event_id)
