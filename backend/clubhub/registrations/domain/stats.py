"""Pure aggregation helpers for registration statistics."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from clubhub.registrations.domain import models

TREND_DAYS = 30


@dataclass(frozen=True, slots=True)
class StatusBreakdown:
	total: int = 0
	pending: int = 0
	confirmed: int = 0
	cancelled: int = 0
	waitlist: int = 0
	attended: int = 0
	no_show: int = 0


@dataclass(frozen=True, slots=True)
class Availability:
	available: bool
	remaining: Optional[int]
	total: Optional[int]
	confirmed: int


@dataclass(frozen=True, slots=True)
class DailyCount:
	date: str
	count: int


def summarize_statuses(statuses: Iterable[str | models.RegistrationStatus]) -> StatusBreakdown:
	counts = Counter(models.RegistrationStatus(status) for status in statuses)
	return StatusBreakdown(
		total=sum(counts.values()),
		pending=counts[models.RegistrationStatus.PENDING],
		confirmed=counts[models.RegistrationStatus.CONFIRMED],
		cancelled=counts[models.RegistrationStatus.CANCELLED],
		waitlist=counts[models.RegistrationStatus.WAITLIST],
		attended=counts[models.RegistrationStatus.ATTENDED],
		no_show=counts[models.RegistrationStatus.NO_SHOW],
	)


def compute_availability(max_participants: Optional[int], breakdown: StatusBreakdown) -> Availability:
	"""Availability from live counts; ``remaining`` is None for unlimited events."""
	confirmed = breakdown.confirmed + breakdown.attended
	if max_participants is None:
		return Availability(available=True, remaining=None, total=None, confirmed=confirmed)
	remaining = max_participants - confirmed
	return Availability(available=remaining > 0, remaining=remaining, total=max_participants, confirmed=confirmed)


def daily_trend(timestamps: Iterable[datetime], now: datetime, *, days: int = TREND_DAYS) -> list[DailyCount]:
	"""Registrations per UTC day over the trailing window, oldest first.

	Days without registrations are omitted.
	"""
	cutoff = now - timedelta(days=days)
	buckets: Counter[str] = Counter()
	for ts in timestamps:
		if ts >= cutoff:
			buckets[ts.date().isoformat()] += 1
	return [DailyCount(date=day, count=buckets[day]) for day in sorted(buckets)]


__all__ = [
	"Availability",
	"DailyCount",
	"StatusBreakdown",
	"TREND_DAYS",
	"compute_availability",
	"daily_trend",
	"summarize_statuses",
]
