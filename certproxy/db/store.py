#!/usr/bin/env python3
#
# certproxy/db/store.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Async facade over the sqlite3 data-access modules.

Each call runs on a worker thread with its own short-lived connection, so
a slow write never blocks the event loop and concurrent requests never
share a connection. sqlite errors are translated into the CertProxy
error taxonomy here and nowhere else.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from ..errors import CertProxyError, ConflictError, DatabaseError
from ..models.records import Certificate, IssuanceOutcome, ProxyHost, RenewalLogEntry, User
from . import (
	sqlite_accounts,
	sqlite_certificates,
	sqlite_proxies,
	sqlite_renewal_logs,
	sqlite_schema,
)
from .sqlite_runtime import connection

_log = logging.getLogger(__name__)

T = TypeVar("T")


class CertificateStore:
	"""Single source of truth for proxies, certificates and renewal logs."""

	def __init__(self, db_path: Path) -> None:
		self.db_path = db_path

	def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
		try:
			with connection(self.db_path) as conn:
				return fn(conn, *args, **kwargs)
		except CertProxyError:
			raise
		except sqlite3.IntegrityError as exc:
			_log.warning("DB_CONFLICT %s: %s", fn.__name__, exc)
			raise ConflictError("The change conflicts with existing data") from exc
		except sqlite3.Error as exc:
			_log.error("DB_ERROR %s: %s", fn.__name__, exc)
			raise DatabaseError("Database operation failed") from exc

	async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
		return await asyncio.to_thread(functools.partial(self._call, fn, *args, **kwargs))

	# -- bootstrap --------------------------------------------------------

	async def init_schema(self) -> None:
		await self._run(sqlite_schema.init_schema)

	async def ensure_default_admin(self, password: str = "") -> str | None:
		return await self._run(sqlite_schema.ensure_default_admin, password)

	# -- users & tokens ---------------------------------------------------

	async def get_user_by_username(self, username: str) -> User | None:
		return await self._run(sqlite_accounts.get_user_by_username, username)

	async def create_user(self, username: str, password: str, is_admin: bool = False) -> int:
		return await self._run(sqlite_accounts.create_user, username, password, is_admin)

	async def update_last_login(self, user_id: int) -> None:
		await self._run(sqlite_accounts.update_last_login, user_id)

	async def create_auth_token(self, user_id: int, token: str, expires_at: datetime, max_expires_at: datetime) -> int:
		return await self._run(sqlite_accounts.create_auth_token, user_id, token, expires_at, max_expires_at)

	async def get_user_by_token(self, token: str) -> User | None:
		return await self._run(sqlite_accounts.get_user_by_token, token)

	async def refresh_auth_token(self, token: str) -> None:
		await self._run(sqlite_accounts.refresh_auth_token, token)

	async def delete_auth_token(self, token: str) -> None:
		await self._run(sqlite_accounts.delete_auth_token, token)

	# -- proxies ----------------------------------------------------------

	async def create_proxy(self, user_id: int, domain: str, target_host: str, target_port: int) -> ProxyHost:
		return await self._run(sqlite_proxies.create_proxy, user_id, domain, target_host, target_port)

	async def get_proxy(self, proxy_id: int, user_id: int | None = None) -> ProxyHost | None:
		return await self._run(sqlite_proxies.get_proxy, proxy_id, user_id)

	async def list_proxies(self, user_id: int | None = None) -> list[ProxyHost]:
		return await self._run(sqlite_proxies.list_proxies, user_id)

	async def update_proxy(self, proxy_id: int, **fields: Any) -> ProxyHost | None:
		return await self._run(sqlite_proxies.update_proxy, proxy_id, **fields)

	async def delete_proxy(self, proxy_id: int) -> bool:
		return await self._run(sqlite_proxies.delete_proxy, proxy_id)

	# -- certificate lifecycle -------------------------------------------

	async def record_issuance_attempt(self, proxy_id: int, primary_domain: str, san_list: Iterable[str] = ()) -> int:
		return await self._run(sqlite_certificates.record_issuance_attempt, proxy_id, primary_domain, list(san_list))

	async def finalize(self, certificate_id: int, outcome: IssuanceOutcome) -> Certificate:
		return await self._run(sqlite_certificates.finalize, certificate_id, outcome)

	async def supersede(self, proxy_id: int) -> int | None:
		return await self._run(sqlite_certificates.supersede, proxy_id)

	async def revoke(self, certificate_id: int) -> Certificate:
		return await self._run(sqlite_certificates.revoke, certificate_id)

	async def delete(self, certificate_id: int) -> bool:
		return await self._run(sqlite_certificates.delete_certificate, certificate_id)

	async def mark_passively_expired(self) -> int:
		return await self._run(sqlite_certificates.mark_passively_expired)

	async def fail_abandoned_pending(self) -> int:
		return await self._run(sqlite_certificates.fail_abandoned_pending)

	async def get(self, certificate_id: int, user_id: int | None = None) -> Certificate | None:
		return await self._run(sqlite_certificates.get_certificate, certificate_id, user_id)

	async def current_for_proxy(self, proxy_id: int) -> Certificate | None:
		return await self._run(sqlite_certificates.current_for_proxy, proxy_id)

	async def list_for_user(self, user_id: int) -> list[Certificate]:
		return await self._run(sqlite_certificates.list_for_user, user_id)

	async def get_domains(self, certificate_id: int) -> list[str]:
		return await self._run(sqlite_certificates.get_domains, certificate_id)

	async def find_expiring_soon(self, horizon_days: int) -> list[Certificate]:
		return await self._run(sqlite_certificates.find_expiring_soon, horizon_days)

	async def find_expired_valid(self) -> list[Certificate]:
		return await self._run(sqlite_certificates.find_expired_valid)

	# -- renewal log ------------------------------------------------------

	async def append_renewal_log(self, domain: str, status: str, error_message: str | None = None) -> int:
		return await self._run(sqlite_renewal_logs.append_renewal_log, domain, status, error_message)

	async def list_renewal_logs(self, page: int = 1, limit: int = 50) -> tuple[list[RenewalLogEntry], int]:
		return await self._run(sqlite_renewal_logs.list_renewal_logs, page, limit)

	async def list_renewal_logs_for_domain(self, domain: str) -> list[RenewalLogEntry]:
		return await self._run(sqlite_renewal_logs.list_renewal_logs_for_domain, domain)

	async def count_renewals_by_status(self, since: datetime) -> dict[str, int]:
		return await self._run(sqlite_renewal_logs.count_renewals_by_status, since)
