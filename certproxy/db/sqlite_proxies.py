#!/usr/bin/env python3
#
# certproxy/db/sqlite_proxies.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Proxy host CRUD."""

from __future__ import annotations

import sqlite3
from typing import Any

from ..errors import ConflictError
from ..models.records import ProxyHost
from ..utils.time import utcnow
from .sqlite_runtime import UNSET, transaction


def _duplicate_domain(domain: str) -> ConflictError:
	return ConflictError(f"A proxy for {domain} already exists")


def create_proxy(
	conn: sqlite3.Connection,
	user_id: int,
	domain: str,
	target_host: str,
	target_port: int,
) -> ProxyHost:
	"""Insert an active, TLS-less proxy host and return it."""
	now = utcnow()
	try:
		with transaction(conn):
			cur = conn.execute(
				"""
				INSERT INTO proxies (user_id, domain, target_host, target_port, ssl_enabled, status, created_at, updated_at)
				VALUES (?, ?, ?, ?, 0, 'active', ?, ?)
				""",
				(user_id, domain, target_host, target_port, now, now),
			)
			proxy_id = cur.lastrowid
	except sqlite3.IntegrityError as exc:
		if "proxies.domain" in str(exc):
			raise _duplicate_domain(domain) from exc
		raise
	proxy = get_proxy(conn, proxy_id)
	assert proxy is not None
	return proxy


def get_proxy(conn: sqlite3.Connection, proxy_id: int, user_id: int | None = None) -> ProxyHost | None:
	"""Get a proxy by id, optionally restricted to one owner."""
	if user_id is None:
		row = conn.execute("SELECT * FROM proxies WHERE id = ?", (proxy_id,)).fetchone()
	else:
		row = conn.execute(
			"SELECT * FROM proxies WHERE id = ? AND user_id = ?", (proxy_id, user_id)
		).fetchone()
	return ProxyHost.from_row(row) if row else None


def list_proxies(conn: sqlite3.Connection, user_id: int | None = None) -> list[ProxyHost]:
	if user_id is None:
		rows = conn.execute("SELECT * FROM proxies ORDER BY domain").fetchall()
	else:
		rows = conn.execute(
			"SELECT * FROM proxies WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
		).fetchall()
	return [ProxyHost.from_row(r) for r in rows]


def update_proxy(
	conn: sqlite3.Connection,
	proxy_id: int,
	*,
	domain: Any = UNSET,
	target_host: Any = UNSET,
	target_port: Any = UNSET,
	ssl_enabled: Any = UNSET,
	status: Any = UNSET,
) -> ProxyHost | None:
	"""Update the given columns; returns the new row or None if not found."""
	fields = {
		"domain": domain,
		"target_host": target_host,
		"target_port": target_port,
		"ssl_enabled": ssl_enabled,
		"status": status,
	}
	updates = {k: (int(v) if k == "ssl_enabled" else v) for k, v in fields.items() if v is not UNSET}
	if updates:
		assignments = ", ".join(f"{column} = ?" for column in updates)
		try:
			with transaction(conn):
				cur = conn.execute(
					f"UPDATE proxies SET {assignments}, updated_at = ? WHERE id = ?",
					(*updates.values(), utcnow(), proxy_id),
				)
				if cur.rowcount == 0:
					return None
		except sqlite3.IntegrityError as exc:
			if "proxies.domain" in str(exc):
				raise _duplicate_domain(domain) from exc
			raise
	return get_proxy(conn, proxy_id)


def delete_proxy(conn: sqlite3.Connection, proxy_id: int) -> bool:
	"""Delete a proxy; its certificates go with it (FK cascade)."""
	with transaction(conn):
		cur = conn.execute("DELETE FROM proxies WHERE id = ?", (proxy_id,))
		return cur.rowcount > 0
