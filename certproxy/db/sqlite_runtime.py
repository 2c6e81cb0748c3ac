#!/usr/bin/env python3
#
# certproxy/db/sqlite_runtime.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite plumbing shared by the data-access modules.

Timestamps are stored as ISO-8601 UTC text with a ``Z`` suffix and fixed
width microseconds, so ``ORDER BY``/``<`` on the raw column is
chronological. Columns declared ``timestamp`` come back as aware
``datetime`` objects.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

_log = logging.getLogger(__name__)

# "Leave this column alone" marker for partial updates (None means NULL)
UNSET: object = object()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_BUSY_TIMEOUT_S = 30.0


def to_db_timestamp(value: datetime) -> str:
	if value.tzinfo is None:
		raise ValueError("Naive datetime not allowed in SQLite")
	text = value.astimezone(timezone.utc).isoformat(timespec="microseconds")
	return text.replace("+00:00", "Z")


def from_db_timestamp(raw: bytes) -> datetime:
	text = raw.decode("utf-8", errors="replace")
	try:
		parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
	except ValueError:
		_log.error("DB corrupt timestamp %r, using epoch", text)
		return _EPOCH
	if parsed.tzinfo is None:
		return parsed.replace(tzinfo=timezone.utc)
	return parsed.astimezone(timezone.utc)


# Process-global registration
sqlite3.register_adapter(datetime, to_db_timestamp)
sqlite3.register_converter("timestamp", from_db_timestamp)


def connect(db_path: Path) -> sqlite3.Connection:
	"""Open ``db_path`` (creating its directory) in WAL mode with foreign keys on."""
	db_path.parent.mkdir(parents=True, exist_ok=True)
	conn = sqlite3.connect(
		str(db_path),
		detect_types=sqlite3.PARSE_DECLTYPES,
		check_same_thread=False,
		timeout=_BUSY_TIMEOUT_S,
	)
	conn.row_factory = sqlite3.Row
	try:
		# journal_mode is persistent; only the first connection pays for the switch
		if conn.execute("PRAGMA journal_mode").fetchone()[0].lower() != "wal":
			conn.execute("PRAGMA journal_mode=WAL")
		conn.execute("PRAGMA foreign_keys=ON")
	except sqlite3.Error:
		conn.close()
		raise
	return conn


@contextmanager
def connection(db_path: Path) -> Iterator[sqlite3.Connection]:
	conn = connect(db_path)
	try:
		yield conn
	finally:
		conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False) -> Iterator[None]:
	"""Commit on success, roll back on any exception.

	Nested use joins the outer transaction. ``immediate=True`` acquires the
	write lock at ``BEGIN`` so a read-check-insert sequence cannot interleave
	with another writer.
	"""
	if conn.in_transaction:
		yield
		return
	conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
	try:
		yield
	except BaseException:
		if conn.in_transaction:
			conn.rollback()
		raise
	conn.commit()
