#!/usr/bin/env python3
#
# certproxy/db/sqlite_certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate lifecycle persistence.

State machine per row::

	pending -> valid | failed
	valid   -> expired | revoked

``expired``, ``failed`` and ``revoked`` are terminal; a renewal inserts a
new row. Every transition is an UPDATE guarded by the expected source
status, and the partial unique index ``idx_certificates_one_active`` keeps
at most one pending/valid row per proxy even across racing connections.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Iterable

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.records import Certificate, IssuanceOutcome
from ..utils.config import CERTIFICATE_LIFETIME_DAYS
from ..utils.time import utcnow
from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


def _extra_domains(conn: sqlite3.Connection, certificate_id: int, primary: str) -> tuple[str, ...]:
	rows = conn.execute(
		"SELECT domain FROM certificate_domains WHERE certificate_id = ? ORDER BY id",
		(certificate_id,),
	).fetchall()
	return tuple(r["domain"] for r in rows if r["domain"] != primary)


def _to_record(conn: sqlite3.Connection, row: sqlite3.Row) -> Certificate:
	return Certificate.from_row(row, _extra_domains(conn, row["id"], row["domain"]))


def _replace_domains(conn: sqlite3.Connection, certificate_id: int, domains: Iterable[str]) -> None:
	"""Replace the SAN set of a certificate (set semantics, order kept)."""
	conn.execute("DELETE FROM certificate_domains WHERE certificate_id = ?", (certificate_id,))
	conn.executemany(
		"INSERT OR IGNORE INTO certificate_domains (certificate_id, domain) VALUES (?, ?)",
		[(certificate_id, d) for d in dict.fromkeys(domains)],
	)


def _active_conflict(proxy_id: int) -> ConflictError:
	return ConflictError(f"Proxy {proxy_id} already has a pending or valid certificate")


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------

def record_issuance_attempt(
	conn: sqlite3.Connection,
	proxy_id: int,
	primary_domain: str,
	san_list: Iterable[str] = (),
	*,
	now: datetime | None = None,
) -> int:
	"""Insert a ``pending`` row and return its id.

	``expires_at`` holds a placeholder (now + 90 days) until ``finalize``
	stores the real value read from the issued certificate.

	Raises:
		ConflictError: the proxy already has a pending/valid certificate
		NotFoundError: the proxy does not exist
	"""
	now = now or utcnow()
	placeholder = now + timedelta(days=CERTIFICATE_LIFETIME_DAYS)
	try:
		with transaction(conn, immediate=True):
			existing = conn.execute(
				"SELECT id FROM certificates WHERE proxy_id = ? AND status IN ('pending', 'valid')",
				(proxy_id,),
			).fetchone()
			if existing is not None:
				raise _active_conflict(proxy_id)
			cur = conn.execute(
				"""
				INSERT INTO certificates (proxy_id, domain, status, expires_at, created_at, updated_at)
				VALUES (?, ?, 'pending', ?, ?, ?)
				""",
				(proxy_id, primary_domain, placeholder, now, now),
			)
			certificate_id = cur.lastrowid
			_replace_domains(conn, certificate_id, [primary_domain, *san_list])
	except sqlite3.IntegrityError as exc:
		message = str(exc)
		if "FOREIGN KEY" in message:
			raise NotFoundError(f"Proxy {proxy_id} not found") from exc
		if "certificates.proxy_id" in message:
			raise _active_conflict(proxy_id) from exc
		raise
	_log.debug("CERT_STORE pending certificate=%d proxy=%d domain=%s", certificate_id, proxy_id, primary_domain)
	return certificate_id


def finalize(conn: sqlite3.Connection, certificate_id: int, outcome: IssuanceOutcome) -> Certificate:
	"""Resolve a ``pending`` row to ``valid`` or ``failed``.

	On ``valid`` the authoritative expiry is stored, the owning proxy gets
	``ssl_enabled = 1`` and the SAN rows are replaced by the issued set.

	Raises:
		NotFoundError: unknown certificate
		ConflictError: the row is no longer pending
	"""
	now = utcnow()
	with transaction(conn, immediate=True):
		row = conn.execute("SELECT * FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
		if row is None:
			raise NotFoundError(f"Certificate {certificate_id} not found")
		if row["status"] != "pending":
			raise ConflictError(
				f"Certificate {certificate_id} is {row['status']}, only pending certificates can be finalized"
			)

		if outcome.status == "valid":
			conn.execute(
				"""
				UPDATE certificates
				SET status = 'valid', expires_at = ?, issued_at = ?, updated_at = ?
				WHERE id = ? AND status = 'pending'
				""",
				(outcome.expires_at, outcome.issued_at, now, certificate_id),
			)
			conn.execute(
				"UPDATE proxies SET ssl_enabled = 1, updated_at = ? WHERE id = ?",
				(now, row["proxy_id"]),
			)
			if outcome.domains:
				_replace_domains(conn, certificate_id, [row["domain"], *outcome.domains])
		else:
			conn.execute(
				"UPDATE certificates SET status = 'failed', updated_at = ? WHERE id = ? AND status = 'pending'",
				(now, certificate_id),
			)

		updated = conn.execute("SELECT * FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
		return _to_record(conn, updated)


def supersede(conn: sqlite3.Connection, proxy_id: int) -> int | None:
	"""Expire the current pending/valid row of a proxy; None if there is none."""
	with transaction(conn, immediate=True):
		row = conn.execute(
			"""
			SELECT id FROM certificates
			WHERE proxy_id = ? AND status IN ('pending', 'valid')
			ORDER BY created_at DESC, id DESC
			LIMIT 1
			""",
			(proxy_id,),
		).fetchone()
		if row is None:
			return None
		conn.execute(
			"UPDATE certificates SET status = 'expired', updated_at = ? WHERE id = ? AND status IN ('pending', 'valid')",
			(utcnow(), row["id"]),
		)
	return row["id"]


def revoke(conn: sqlite3.Connection, certificate_id: int) -> Certificate:
	"""``valid -> revoked``; the proxy falls back to plain HTTP.

	Raises:
		NotFoundError: unknown certificate
		ValidationError: the certificate is not valid
	"""
	now = utcnow()
	with transaction(conn, immediate=True):
		row = conn.execute("SELECT * FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
		if row is None:
			raise NotFoundError(f"Certificate {certificate_id} not found")
		if row["status"] != "valid":
			raise ValidationError("Only valid certificates can be revoked")
		conn.execute(
			"UPDATE certificates SET status = 'revoked', updated_at = ? WHERE id = ? AND status = 'valid'",
			(now, certificate_id),
		)
		conn.execute(
			"UPDATE proxies SET ssl_enabled = 0, updated_at = ? WHERE id = ?",
			(now, row["proxy_id"]),
		)
		updated = conn.execute("SELECT * FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
		return _to_record(conn, updated)


def mark_passively_expired(conn: sqlite3.Connection, now: datetime | None = None) -> int:
	"""Move valid rows whose expiry has passed to ``expired``."""
	now = now or utcnow()
	with transaction(conn):
		cur = conn.execute(
			"UPDATE certificates SET status = 'expired', updated_at = ? WHERE status = 'valid' AND expires_at <= ?",
			(now, now),
		)
		return cur.rowcount


def fail_abandoned_pending(conn: sqlite3.Connection) -> int:
	"""Mark ``pending`` rows left behind by a previous process as ``failed``.

	Only called at startup, before any request can insert a new pending row.
	"""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"UPDATE certificates SET status = 'failed', updated_at = ? WHERE status = 'pending'",
			(utcnow(),),
		)
		return cur.rowcount


def delete_certificate(conn: sqlite3.Connection, certificate_id: int) -> bool:
	"""Delete a row (and its SANs). Deleting the live certificate disables TLS."""
	now = utcnow()
	with transaction(conn, immediate=True):
		row = conn.execute("SELECT proxy_id, status FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
		if row is None:
			return False
		conn.execute("DELETE FROM certificates WHERE id = ?", (certificate_id,))
		if row["status"] == "valid":
			conn.execute(
				"UPDATE proxies SET ssl_enabled = 0, updated_at = ? WHERE id = ?",
				(now, row["proxy_id"]),
			)
	return True


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_certificate(
	conn: sqlite3.Connection,
	certificate_id: int,
	user_id: int | None = None,
) -> Certificate | None:
	"""Get a certificate, optionally only if its proxy belongs to ``user_id``."""
	if user_id is None:
		row = conn.execute("SELECT * FROM certificates WHERE id = ?", (certificate_id,)).fetchone()
	else:
		row = conn.execute(
			"""
			SELECT c.* FROM certificates c
			JOIN proxies p ON c.proxy_id = p.id
			WHERE c.id = ? AND p.user_id = ?
			""",
			(certificate_id, user_id),
		).fetchone()
	return _to_record(conn, row) if row else None


def current_for_proxy(conn: sqlite3.Connection, proxy_id: int) -> Certificate | None:
	"""Most recently created row of a proxy, whatever its status."""
	row = conn.execute(
		"""
		SELECT * FROM certificates
		WHERE proxy_id = ?
		ORDER BY created_at DESC, id DESC
		LIMIT 1
		""",
		(proxy_id,),
	).fetchone()
	return _to_record(conn, row) if row else None


def list_for_user(conn: sqlite3.Connection, user_id: int) -> list[Certificate]:
	rows = conn.execute(
		"""
		SELECT c.* FROM certificates c
		JOIN proxies p ON c.proxy_id = p.id
		WHERE p.user_id = ?
		ORDER BY c.created_at DESC, c.id DESC
		""",
		(user_id,),
	).fetchall()
	return [_to_record(conn, r) for r in rows]


def get_domains(conn: sqlite3.Connection, certificate_id: int) -> list[str]:
	"""All names on a certificate, primary first."""
	cert = get_certificate(conn, certificate_id)
	if cert is None:
		raise NotFoundError(f"Certificate {certificate_id} not found")
	return cert.all_domains


def find_expiring_soon(
	conn: sqlite3.Connection,
	horizon_days: int,
	now: datetime | None = None,
) -> list[Certificate]:
	"""Valid certificates expiring within ``horizon_days`` but not yet expired."""
	now = now or utcnow()
	rows = conn.execute(
		"""
		SELECT * FROM certificates
		WHERE status = 'valid' AND expires_at > ? AND expires_at <= ?
		ORDER BY expires_at ASC, id ASC
		""",
		(now, now + timedelta(days=horizon_days)),
	).fetchall()
	return [_to_record(conn, r) for r in rows]


def find_expired_valid(conn: sqlite3.Connection, now: datetime | None = None) -> list[Certificate]:
	"""Rows still marked valid although their expiry has passed."""
	now = now or utcnow()
	rows = conn.execute(
		"SELECT * FROM certificates WHERE status = 'valid' AND expires_at <= ? ORDER BY expires_at ASC",
		(now,),
	).fetchall()
	return [_to_record(conn, r) for r in rows]
