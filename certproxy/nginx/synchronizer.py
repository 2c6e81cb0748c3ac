#!/usr/bin/env python3
#
# certproxy/nginx/synchronizer.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Materialize proxy hosts as nginx site files and reload nginx safely."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Iterable, Sequence
from pathlib import Path

from ..errors import ExternalServiceError
from ..models.records import ProxyHost
from ..utils.exec import CommandRunner, run_exec
from ..utils.files import atomic_write_text, unlink_if_exists
from .nginx_config import (
	acme_config_filename,
	config_filename,
	render,
	render_acme_challenge,
)

_log = logging.getLogger(__name__)

_ACME_SUFFIX = "-acme.conf"


class NginxSynchronizer:
	"""Owns ``sites-available``/``sites-enabled`` and the nginx control commands.

	Writes to one domain's file are serialized by a per-domain lock; files of
	different domains are written concurrently. ``reload`` is serialized
	globally and never signals nginx unless ``nginx -t`` passed.
	"""

	def __init__(
		self,
		sites_available: Path,
		sites_enabled: Path,
		letsencrypt_dir: Path,
		webroot: Path,
		*,
		nginx_bin: str = "nginx",
		runner: CommandRunner = run_exec,
	) -> None:
		self.sites_available = sites_available
		self.sites_enabled = sites_enabled
		self.letsencrypt_dir = letsencrypt_dir
		self.webroot = webroot
		self.nginx_bin = nginx_bin
		self._runner = runner
		# entries vanish once no coroutine holds or waits for the lock
		self._domain_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
		self._reload_lock = asyncio.Lock()

	def _lock_for(self, domain: str) -> asyncio.Lock:
		lock = self._domain_locks.get(domain)
		if lock is None:
			lock = asyncio.Lock()
			self._domain_locks[domain] = lock
		return lock

	def render(self, proxy: ProxyHost) -> str:
		return render(proxy, self.letsencrypt_dir, self.webroot)

	# -- file plumbing (runs in worker threads) ----------------------------

	def _write_if_changed(self, path: Path, content: str) -> bool:
		try:
			if path.read_text(encoding="utf-8") == content:
				return False
		except FileNotFoundError:
			pass
		atomic_write_text(path, content)
		return True

	def _enable(self, filename: str) -> None:
		available = self.sites_available / filename
		enabled = self.sites_enabled / filename
		self.sites_enabled.mkdir(parents=True, exist_ok=True)
		if enabled.is_symlink() and enabled.resolve() == available.resolve():
			return
		unlink_if_exists(enabled)
		enabled.symlink_to(available)

	def _disable(self, filename: str) -> bool:
		return unlink_if_exists(self.sites_enabled / filename)

	def _remove(self, filename: str) -> bool:
		disabled = self._disable(filename)
		removed = unlink_if_exists(self.sites_available / filename)
		return disabled or removed

	# -- proxy hosts -----------------------------------------------------

	async def activate(self, proxy: ProxyHost) -> bool:
		"""Write the host's config and enable or disable it by status.

		Returns True when the file content changed. Disabling keeps the
		authored file so the host can be re-enabled without re-rendering.
		"""
		content = self.render(proxy)
		filename = config_filename(proxy.domain)
		async with self._lock_for(proxy.domain):
			changed = await asyncio.to_thread(self._write_if_changed, self.sites_available / filename, content)
			if proxy.is_active:
				await asyncio.to_thread(self._enable, filename)
			else:
				await asyncio.to_thread(self._disable, filename)
		_log.info(
			"NGINX_CONFIG domain=%s ssl=%s enabled=%s changed=%s",
			proxy.domain, proxy.ssl_enabled, proxy.is_active, changed,
		)
		return changed

	async def deactivate(self, domain: str) -> bool:
		"""Disable and delete a host's config; already absent counts as success."""
		filename = config_filename(domain)
		async with self._lock_for(domain):
			removed = await asyncio.to_thread(self._remove, filename)
		if removed:
			_log.info("NGINX_CONFIG domain=%s removed", domain)
		return removed

	# -- ACME challenge routing -------------------------------------------

	async def install_acme_challenge(self, domains: Sequence[str]) -> None:
		content = render_acme_challenge(domains, self.webroot)
		filename = acme_config_filename(domains[0])
		async with self._lock_for(domains[0]):
			await asyncio.to_thread(atomic_write_text, self.sites_available / filename, content)
			await asyncio.to_thread(self._enable, filename)

	async def remove_acme_challenge(self, primary_domain: str) -> None:
		filename = acme_config_filename(primary_domain)
		async with self._lock_for(primary_domain):
			await asyncio.to_thread(self._remove, filename)

	# -- nginx process ---------------------------------------------------

	async def reload(self) -> None:
		"""``nginx -t`` then ``nginx -s reload``.

		Raises:
			ExternalServiceError: validation or the reload signal failed
		"""
		async with self._reload_lock:
			test = await self._runner(self.nginx_bin, "-t")
			if not test.ok:
				_log.error("NGINX_RELOAD config test failed, not reloading: %s", test.last_error_line())
				raise ExternalServiceError(f"nginx configuration test failed: {test.last_error_line()}")
			result = await self._runner(self.nginx_bin, "-s", "reload")
			if not result.ok:
				_log.error("NGINX_RELOAD reload failed: %s", result.last_error_line())
				raise ExternalServiceError(f"nginx reload failed: {result.last_error_line()}")
		_log.info("NGINX_RELOAD configuration reloaded")

	async def is_installed(self) -> bool:
		result = await self._runner(self.nginx_bin, "-v")
		return result.ok

	# -- bulk maintenance ------------------------------------------------

	async def regenerate_all(self, proxies: Iterable[ProxyHost]) -> tuple[int, int]:
		"""Re-materialize every host; returns ``(succeeded, failed)``.

		A failing host is logged and skipped, the others are still written.
		"""
		succeeded = failed = 0
		for proxy in proxies:
			try:
				await self.activate(proxy)
				succeeded += 1
			except (OSError, ValueError) as exc:
				failed += 1
				_log.error("NGINX_CONFIG domain=%s regeneration failed: %s", proxy.domain, exc)
		_log.info("NGINX_CONFIG regenerated %d configs (%d failed)", succeeded, failed)
		return succeeded, failed

	async def cleanup_orphans(self, known_domains: Iterable[str]) -> list[str]:
		"""Remove site files whose domain has no proxy row. ACME files are left alone."""
		known = set(known_domains)

		def _candidates() -> list[str]:
			if not self.sites_available.is_dir():
				return []
			return sorted(
				p.name[: -len(".conf")]
				for p in self.sites_available.glob("*.conf")
				if not p.name.endswith(_ACME_SUFFIX)
			)

		removed = []
		for domain in await asyncio.to_thread(_candidates):
			if domain not in known:
				await self.deactivate(domain)
				removed.append(domain)
				_log.info("NGINX_CONFIG removed orphaned config %s", domain)
		return removed
