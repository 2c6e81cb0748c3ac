#!/usr/bin/env python3
#
# certproxy/services/proxies.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Proxy host CRUD with nginx synchronization.

Configuration problems never undo a database change: the row is kept and
the problem is returned as a warning (and logged) for the operator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..db.store import CertificateStore
from ..errors import ExternalServiceError, NotFoundError, ValidationError
from ..models.proxies import ProxyCreate, ProxyUpdate
from ..models.records import ProxyHost
from ..nginx.synchronizer import NginxSynchronizer

_log = logging.getLogger(__name__)


@dataclass
class ProxyMutationResult:
	proxy: ProxyHost
	warnings: list[str] = field(default_factory=list)


async def apply_proxy_config(
	store: CertificateStore,
	sync: NginxSynchronizer,
	proxy: ProxyHost,
) -> tuple[ProxyHost, list[str]]:
	"""Write, enable/disable and reload the config of one host.

	A failed write marks the host ``error`` (which also keeps it out of
	sites-enabled on the next sync); a failed reload is only a warning.
	"""
	warnings: list[str] = []
	try:
		await sync.activate(proxy)
	except (OSError, ValueError) as exc:
		_log.error("PROXY_SYNC domain=%s config write failed: %s", proxy.domain, exc)
		warnings.append(f"nginx configuration for {proxy.domain} could not be written: {exc}")
		if proxy.status != "error":
			proxy = await store.update_proxy(proxy.id, status="error") or proxy
		return proxy, warnings

	try:
		await sync.reload()
	except ExternalServiceError as exc:
		_log.error("PROXY_SYNC domain=%s reload failed: %s", proxy.domain, exc)
		warnings.append(exc.message)
	return proxy, warnings


async def remove_proxy_config(sync: NginxSynchronizer, domain: str) -> list[str]:
	"""Deactivate a host's config and reload; failures become warnings."""
	warnings: list[str] = []
	try:
		await sync.deactivate(domain)
		await sync.reload()
	except (OSError, ValueError) as exc:
		_log.error("PROXY_SYNC domain=%s config removal failed: %s", domain, exc)
		warnings.append(f"nginx configuration for {domain} could not be removed: {exc}")
	except ExternalServiceError as exc:
		_log.error("PROXY_SYNC domain=%s reload failed: %s", domain, exc)
		warnings.append(exc.message)
	return warnings


class ProxyService:
	def __init__(self, store: CertificateStore, sync: NginxSynchronizer) -> None:
		self.store = store
		self.sync = sync

	async def get(self, proxy_id: int, user_id: int) -> ProxyHost:
		proxy = await self.store.get_proxy(proxy_id, user_id)
		if proxy is None:
			raise NotFoundError("Proxy not found")
		return proxy

	async def list_proxies(self, user_id: int) -> list[ProxyHost]:
		return await self.store.list_proxies(user_id)

	async def create(self, user_id: int, data: ProxyCreate) -> ProxyMutationResult:
		"""Create an active plain-HTTP host. Duplicate domains raise ``ConflictError``."""
		proxy = await self.store.create_proxy(user_id, data.domain, data.target_host, data.target_port)
		_log.info("PROXY_CREATE id=%d domain=%s user=%d", proxy.id, proxy.domain, user_id)
		proxy, warnings = await apply_proxy_config(self.store, self.sync, proxy)
		return ProxyMutationResult(proxy, warnings)

	async def update(self, proxy_id: int, user_id: int, data: ProxyUpdate) -> ProxyMutationResult:
		existing = await self.get(proxy_id, user_id)
		changes = data.model_dump(exclude_unset=True, exclude_none=True)

		domain_changed = "domain" in changes and changes["domain"] != existing.domain
		if domain_changed or (changes.get("ssl_enabled") and not existing.ssl_enabled):
			current = await self.store.current_for_proxy(proxy_id)
			if domain_changed and current is not None and current.status in ("pending", "valid"):
				raise ValidationError("Revoke or delete the certificate before changing the domain")
			if changes.get("ssl_enabled") and not existing.ssl_enabled and (current is None or current.status != "valid"):
				raise ValidationError("TLS can only be enabled while a valid certificate exists")

		updated = await self.store.update_proxy(proxy_id, **changes)
		if updated is None:
			raise NotFoundError("Proxy not found")
		_log.info("PROXY_UPDATE id=%d fields=%s", proxy_id, ",".join(sorted(changes)) or "-")

		warnings: list[str] = []
		if domain_changed:
			warnings += await remove_proxy_config(self.sync, existing.domain)
		updated, sync_warnings = await apply_proxy_config(self.store, self.sync, updated)
		return ProxyMutationResult(updated, warnings + sync_warnings)

	async def delete(self, proxy_id: int, user_id: int) -> ProxyMutationResult:
		"""Delete a host and its certificate rows, then drop its nginx config."""
		existing = await self.get(proxy_id, user_id)
		if not await self.store.delete_proxy(proxy_id):
			raise NotFoundError("Proxy not found")
		_log.info("PROXY_DELETE id=%d domain=%s", proxy_id, existing.domain)
		warnings = await remove_proxy_config(self.sync, existing.domain)
		return ProxyMutationResult(existing, warnings)
