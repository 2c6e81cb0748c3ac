#!/usr/bin/env python3
#
# certproxy/db/sqlite_renewal_logs.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Append-only renewal audit log."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from ..models.records import RenewalLogEntry
from ..utils.time import utcnow
from .sqlite_runtime import transaction

_MAX_ERROR_LENGTH = 1000


def append_renewal_log(
	conn: sqlite3.Connection,
	domain: str,
	status: str,
	error_message: str | None = None,
) -> int:
	if error_message is not None:
		error_message = error_message[:_MAX_ERROR_LENGTH]
	with transaction(conn):
		cur = conn.execute(
			"INSERT INTO renewal_logs (domain, status, error_message, created_at) VALUES (?, ?, ?, ?)",
			(domain, status, error_message, utcnow()),
		)
		return cur.lastrowid


def list_renewal_logs(conn: sqlite3.Connection, page: int = 1, limit: int = 50) -> tuple[list[RenewalLogEntry], int]:
	"""Newest first; returns ``(entries, total)``."""
	total = conn.execute("SELECT COUNT(*) FROM renewal_logs").fetchone()[0]
	rows = conn.execute(
		"SELECT * FROM renewal_logs ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
		(limit, (page - 1) * limit),
	).fetchall()
	return [RenewalLogEntry.from_row(r) for r in rows], total


def list_renewal_logs_for_domain(conn: sqlite3.Connection, domain: str, limit: int = 20) -> list[RenewalLogEntry]:
	rows = conn.execute(
		"SELECT * FROM renewal_logs WHERE domain = ? ORDER BY created_at DESC, id DESC LIMIT ?",
		(domain, limit),
	).fetchall()
	return [RenewalLogEntry.from_row(r) for r in rows]


def count_renewals_by_status(conn: sqlite3.Connection, since: datetime) -> dict[str, int]:
	rows = conn.execute(
		"SELECT status, COUNT(*) AS cnt FROM renewal_logs WHERE created_at >= ? GROUP BY status",
		(since,),
	).fetchall()
	return {r["status"]: r["cnt"] for r in rows}
