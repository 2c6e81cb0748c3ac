#!/usr/bin/env python3
#
# certproxy/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization and bootstrap routines."""

from __future__ import annotations

import logging
import secrets
import sqlite3

from ..utils.crypto import hash_password
from ..utils.time import utcnow
from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the complete schema for fresh installs (idempotent)."""
	with transaction(conn):
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS users (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				username TEXT NOT NULL UNIQUE,
				password_hash TEXT NOT NULL,
				is_admin INTEGER NOT NULL DEFAULT 0,
				is_active INTEGER NOT NULL DEFAULT 1,
				last_login_at timestamp,
				created_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS auth_tokens (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id INTEGER NOT NULL,
				token_hash TEXT NOT NULL UNIQUE,
				expires_at timestamp NOT NULL,
				max_expires_at timestamp NOT NULL,
				created_at timestamp NOT NULL,
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_auth_tokens_expires_at ON auth_tokens(expires_at)")

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS proxies (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id INTEGER NOT NULL,
				domain TEXT NOT NULL UNIQUE,
				target_host TEXT NOT NULL,
				target_port INTEGER NOT NULL CHECK (target_port BETWEEN 1 AND 65535),
				ssl_enabled INTEGER NOT NULL DEFAULT 0,
				status TEXT NOT NULL DEFAULT 'active'
					CHECK (status IN ('active', 'inactive', 'error')),
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL,
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_proxies_user_id ON proxies(user_id)")

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS certificates (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				proxy_id INTEGER NOT NULL,
				domain TEXT NOT NULL,
				status TEXT NOT NULL DEFAULT 'pending'
					CHECK (status IN ('pending', 'valid', 'expired', 'failed', 'revoked')),
				expires_at timestamp NOT NULL,
				issued_at timestamp,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL,
				FOREIGN KEY(proxy_id) REFERENCES proxies(id) ON DELETE CASCADE
			)
			"""
		)
		# At most one in-flight or live certificate per proxy
		conn.execute(
			"""
			CREATE UNIQUE INDEX IF NOT EXISTS idx_certificates_one_active
			ON certificates(proxy_id)
			WHERE status IN ('pending', 'valid')
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_certificates_status_expires ON certificates(status, expires_at)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_certificates_proxy_created ON certificates(proxy_id, created_at)")

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS certificate_domains (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				certificate_id INTEGER NOT NULL,
				domain TEXT NOT NULL,
				UNIQUE(certificate_id, domain),
				FOREIGN KEY(certificate_id) REFERENCES certificates(id) ON DELETE CASCADE
			)
			"""
		)

		# Domain is a weak reference on purpose: log rows outlive their proxy
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS renewal_logs (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				domain TEXT NOT NULL,
				status TEXT NOT NULL CHECK (status IN ('success', 'failed', 'error')),
				error_message TEXT,
				created_at timestamp NOT NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_renewal_logs_domain ON renewal_logs(domain, created_at)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_renewal_logs_created_at ON renewal_logs(created_at)")


def ensure_default_admin(conn: sqlite3.Connection, password: str = "") -> str | None:
	"""Create the initial admin user if no users exist.

	Without a configured password a random one is generated and returned so
	the caller can print it once. Returns None when users already exist.
	"""
	generated = password or secrets.token_urlsafe(12)
	try:
		with transaction(conn, immediate=True):
			count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
			if count:
				return None
			conn.execute(
				"""
				INSERT INTO users (username, password_hash, is_admin, is_active, created_at)
				VALUES ('admin', ?, 1, 1, ?)
				""",
				(hash_password(generated), utcnow()),
			)
	except sqlite3.IntegrityError:
		return None  # another worker beat us
	_log.warning("BOOTSTRAP created initial admin user 'admin'")
	return generated
