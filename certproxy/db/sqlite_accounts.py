#!/usr/bin/env python3
#
# certproxy/db/sqlite_accounts.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""API users and their bearer sessions.

Tokens are never stored: ``auth_tokens.token_hash`` holds the SHA-256
digest. A session slides forward on use (``expires_at``) but never past
``max_expires_at``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta

from ..models.records import User
from ..utils.crypto import hash_password, hash_token
from ..utils.time import utcnow
from .sqlite_runtime import transaction


def _normalize(username: str) -> str:
	return username.strip().lower()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user_by_username(conn: sqlite3.Connection, username: str) -> User | None:
	row = conn.execute("SELECT * FROM users WHERE username = ?", (_normalize(username),)).fetchone()
	return User.from_row(row) if row else None


def create_user(conn: sqlite3.Connection, username: str, password: str, is_admin: bool = False) -> int:
	"""Insert an active user; a taken username raises ``sqlite3.IntegrityError``."""
	with transaction(conn):
		return conn.execute(
			"INSERT INTO users (username, password_hash, is_admin, is_active, created_at) VALUES (?, ?, ?, 1, ?)",
			(_normalize(username), hash_password(password), 1 if is_admin else 0, utcnow()),
		).lastrowid


def update_last_login(conn: sqlite3.Connection, user_id: int) -> None:
	with transaction(conn):
		conn.execute("UPDATE users SET last_login_at = ? WHERE id = ?", (utcnow(), user_id))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def create_auth_token(
	conn: sqlite3.Connection,
	user_id: int,
	token: str,
	expires_at: datetime,
	max_expires_at: datetime,
) -> int:
	with transaction(conn):
		return conn.execute(
			"INSERT INTO auth_tokens (user_id, token_hash, expires_at, max_expires_at, created_at) VALUES (?, ?, ?, ?, ?)",
			(user_id, hash_token(token), expires_at, max_expires_at, utcnow()),
		).lastrowid


def get_user_by_token(conn: sqlite3.Connection, token: str) -> User | None:
	"""Active user owning a live session, or None. Read-only."""
	row = conn.execute(
		"""
		SELECT users.*
		FROM auth_tokens
		JOIN users ON users.id = auth_tokens.user_id
		WHERE auth_tokens.token_hash = :digest
		  AND auth_tokens.expires_at > :now
		  AND users.is_active = 1
		""",
		{"digest": hash_token(token), "now": utcnow()},
	).fetchone()
	return User.from_row(row) if row else None


def refresh_auth_token(conn: sqlite3.Connection, token: str, hours: int = 1) -> None:
	with transaction(conn):
		conn.execute(
			"UPDATE auth_tokens SET expires_at = MIN(:until, max_expires_at) WHERE token_hash = :digest",
			{"until": utcnow() + timedelta(hours=hours), "digest": hash_token(token)},
		)


def delete_auth_token(conn: sqlite3.Connection, token: str) -> None:
	with transaction(conn):
		conn.execute("DELETE FROM auth_tokens WHERE token_hash = ?", (hash_token(token),))
