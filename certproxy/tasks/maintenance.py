#!/usr/bin/env python3
#
# certproxy/tasks/maintenance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Housekeeping jobs for the SQLite database.

They use their own aiosqlite connections so they never compete with the
request path's thread-pool connections for the event loop.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

import aiosqlite

from ..db.sqlite_runtime import to_db_timestamp
from ..utils.scheduler import Scheduler
from ..utils.time import utcnow

_log = logging.getLogger(__name__)

__all__ = [
	"build_maintenance_scheduler",
	"cleanup_stale_sessions",
	"prune_renewal_logs",
	"sqlite_maintenance",
]

RENEWAL_LOG_RETENTION_DAYS = 180


def _missing(db_path: Path) -> bool:
	if Path(db_path).exists():
		return False
	_log.warning("MAINTENANCE SQLite database not found at %s", db_path)
	return True


async def _delete_older_than(db_path: Path, table: str, column: str, cutoff) -> int:
	# text timestamps share one fixed-width format, so "<" is chronological
	async with aiosqlite.connect(db_path) as db:
		cursor = await db.execute(f"DELETE FROM {table} WHERE {column} < ?", (to_db_timestamp(cutoff),))
		await db.commit()
		return cursor.rowcount


async def sqlite_maintenance(db_path: Path) -> None:
	"""Truncate the WAL, refresh planner statistics and run ``PRAGMA optimize``.

	No VACUUM; the database stays small and VACUUM locks it for writers.
	"""
	if _missing(db_path):
		return
	try:
		async with aiosqlite.connect(db_path) as db:
			for statement in ("PRAGMA wal_checkpoint(TRUNCATE)", "ANALYZE", "PRAGMA optimize"):
				await db.execute(statement)
	except Exception:
		_log.exception("MAINTENANCE SQLite maintenance failed")
		raise
	_log.info("MAINTENANCE SQLite maintenance completed")


async def cleanup_stale_sessions(db_path: Path) -> int:
	"""Delete auth tokens past their sliding expiry."""
	if _missing(db_path):
		return 0
	try:
		deleted = await _delete_older_than(db_path, "auth_tokens", "expires_at", utcnow())
	except Exception:
		_log.exception("MAINTENANCE auth token cleanup failed")
		raise
	if deleted:
		_log.info("MAINTENANCE removed %d expired auth tokens", deleted)
	return deleted


async def prune_renewal_logs(db_path: Path, keep_days: int = RENEWAL_LOG_RETENTION_DAYS) -> int:
	"""Drop renewal log entries older than ``keep_days``."""
	if _missing(db_path):
		return 0
	cutoff = utcnow() - timedelta(days=keep_days)
	try:
		deleted = await _delete_older_than(db_path, "renewal_logs", "created_at", cutoff)
	except Exception:
		_log.exception("MAINTENANCE renewal log pruning failed")
		raise
	if deleted:
		_log.info("MAINTENANCE pruned %d renewal log entries older than %d days", deleted, keep_days)
	return deleted


def build_maintenance_scheduler(db_path: Path) -> Scheduler:
	scheduler = Scheduler()
	scheduler.add(
		"session-cleanup", 3600,
		lambda: cleanup_stale_sessions(db_path),
		run_on_start=True, initial_delay=5.0, timeout=60.0,
	)
	scheduler.add(
		"sqlite-maintenance", 6 * 3600,
		lambda: sqlite_maintenance(db_path),
		run_on_start=True, initial_delay=60.0, timeout=300.0,
	)
	scheduler.add(
		"renewal-log-retention", 24 * 3600,
		lambda: prune_renewal_logs(db_path),
		run_on_start=True, initial_delay=120.0, timeout=60.0,
	)
	return scheduler
