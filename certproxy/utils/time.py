#!/usr/bin/env python3
#
# certproxy/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""UTC clock and day arithmetic for expiry and scheduling."""

from __future__ import annotations

import math
from datetime import datetime, time, timedelta, timezone

_SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
	"""Aware "now" in UTC; the only clock the application reads."""
	return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
	"""Convert an aware datetime to UTC; naive values are a bug and raise ValueError."""
	if dt is None:
		return None
	if dt.tzinfo is None:
		raise ValueError("Naive datetime not allowed - must be timezone-aware")
	return dt.astimezone(timezone.utc)


def days_until(expires_at: datetime, now: datetime | None = None) -> int:
	"""Whole days until ``expires_at``, rounded up (negative once passed).

	A certificate expiring in 29 days and 1 hour reports 30 days, so the
	30-day renewal gate opens on the same calendar day for every caller.
	"""
	now = now or utcnow()
	remaining = (ensure_utc(expires_at) - now).total_seconds()
	return math.ceil(remaining / _SECONDS_PER_DAY)


def next_daily_run(at: time, now: datetime | None = None) -> datetime:
	"""Return the next UTC datetime whose wall clock equals ``at``.

	If ``now`` is exactly on the slot, the following day is returned so a
	job that just ran is not re-triggered.
	"""
	now = now or utcnow()
	candidate = now.replace(
		hour=at.hour,
		minute=at.minute,
		second=at.second,
		microsecond=0,
	)
	if candidate <= now:
		candidate += timedelta(days=1)
	return candidate
