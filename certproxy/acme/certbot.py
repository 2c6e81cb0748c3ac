#!/usr/bin/env python3
#
# certproxy/acme/certbot.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate authority client driving the ``certbot`` program.

The client owns no persistent state: it turns an intent (obtain, renew,
revoke) into a certbot invocation and reports what the issued material on
disk says. Recording the outcome is the caller's job.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from pathlib import Path
from typing import Callable

from cryptography import x509

from ..errors import ExternalServiceError
from ..models.certificates import ReachabilityResult
from ..models.records import CertificateInfo
from ..nginx.synchronizer import NginxSynchronizer
from ..utils.config import REACHABILITY_TIMEOUT_SECONDS, Config
from ..utils.exec import CommandRunner, ExecResult, run_exec
from ..utils.time import utcnow
from .challenge import AcmeChallengeRoute
from .reachability import Prober, probe_domain

_log = logging.getLogger(__name__)

ChallengeFactory = Callable[[Sequence[str]], AbstractAsyncContextManager]


def dedupe_domains(primary: str, extra: Iterable[str] = ()) -> list[str]:
	"""Primary first, then extras in order; exact (case-sensitive) duplicates dropped."""
	return list(dict.fromkeys([primary, *(d for d in extra if d)]))


class CertbotClient:
	"""Obtain, renew and revoke Let's Encrypt certificates via certbot (HTTP-01 webroot)."""

	def __init__(
		self,
		sync: NginxSynchronizer,
		*,
		certbot_path: str = "certbot",
		config_dir: Path,
		work_dir: Path,
		logs_dir: Path,
		webroot: Path,
		timeout: float = 300.0,
		runner: CommandRunner = run_exec,
		prober: Prober = probe_domain,
		challenge: ChallengeFactory | None = None,
	) -> None:
		self.sync = sync
		self.certbot_path = certbot_path
		self.config_dir = config_dir
		self.work_dir = work_dir
		self.logs_dir = logs_dir
		self.webroot = webroot
		self.timeout = timeout
		self._runner = runner
		self._prober = prober
		self._challenge = challenge or (lambda domains: AcmeChallengeRoute(sync, domains))

	@classmethod
	def from_config(
		cls,
		cfg: Config,
		sync: NginxSynchronizer,
		*,
		runner: CommandRunner = run_exec,
		prober: Prober = probe_domain,
	) -> "CertbotClient":
		return cls(
			sync,
			certbot_path=cfg.certbot_path,
			config_dir=cfg.certbot_config_dir,
			work_dir=cfg.certbot_work_dir,
			logs_dir=cfg.certbot_logs_dir,
			webroot=cfg.certbot_webroot,
			timeout=cfg.certbot_timeout,
			runner=runner,
			prober=prober,
		)

	def live_path(self, primary: str) -> Path:
		return self.config_dir / "live" / primary / "fullchain.pem"

	def _dir_args(self) -> list[str]:
		return [
			"--config-dir", str(self.config_dir),
			"--work-dir", str(self.work_dir),
			"--logs-dir", str(self.logs_dir),
		]

	async def _certbot(self, *args: str) -> ExecResult:
		return await self._runner(self.certbot_path, *args, timeout=self.timeout)

	def _ensure_dirs(self) -> None:
		for path in (self.config_dir, self.work_dir, self.logs_dir, self.webroot):
			path.mkdir(parents=True, exist_ok=True)

	# ------------------------------------------------------------------

	async def is_installed(self) -> bool:
		result = await self._runner(self.certbot_path, "--version", timeout=30.0)
		return result.ok

	async def test_reachability(self, domain: str, timeout: float = REACHABILITY_TIMEOUT_SECONDS) -> ReachabilityResult:
		return await self._prober(domain, timeout)

	async def obtain(
		self,
		primary: str,
		san_list: Iterable[str] = (),
		email: str | None = None,
	) -> CertificateInfo:
		"""Issue one certificate covering ``primary`` plus ``san_list``.

		Challenge routing for every name is installed for the duration of
		the certbot call and always removed afterwards. Never raises: every
		failure comes back as ``status == "failed"`` with ``error`` set.
		"""
		domains = dedupe_domains(primary, san_list)
		args = ["certonly", "--webroot", "-w", str(self.webroot)]
		for domain in domains:
			args += ["-d", domain]
		args += ["--email", email] if email else ["--register-unsafely-without-email"]
		args += ["--agree-tos", "--non-interactive", "--expand", *self._dir_args()]

		_log.info("CERTBOT_OBTAIN domains=%s", ",".join(domains))
		try:
			await asyncio.to_thread(self._ensure_dirs)
			async with self._challenge(domains):
				result = await self._certbot(*args)
		except Exception as exc:
			_log.exception("CERTBOT_OBTAIN domain=%s aborted", primary)
			return CertificateInfo(domain=primary, status="failed", domains=tuple(domains), error=str(exc) or exc.__class__.__name__)

		if not result.ok:
			_log.error("CERTBOT_OBTAIN domain=%s failed (code=%d): %s", primary, result.code, result.last_error_line())
			return CertificateInfo(domain=primary, status="failed", domains=tuple(domains), error=result.last_error_line())

		info = await self.read_certificate(primary, domains)
		if not info.is_valid:
			_log.error("CERTBOT_OBTAIN domain=%s certbot succeeded but material is %s", primary, info.status)
			return dataclasses.replace(info, status="failed", error=info.error or f"Issued certificate is {info.status}")
		_log.info("CERTBOT_OBTAIN domain=%s valid until %s", primary, info.expires_at)
		return info

	async def renew(self, primary: str) -> CertificateInfo:
		"""Renew an existing lineage by name and reload nginx if it is valid.

		A non-zero certbot exit yields ``failed``. A failed nginx reload is
		attached as a warning; the certificate itself is still valid.

		Raises:
			ExternalServiceError: certbot could not be run at all
		"""
		_log.info("CERTBOT_RENEW domain=%s", primary)
		try:
			result = await self._certbot("renew", "--cert-name", primary, "--non-interactive", *self._dir_args())
		except Exception as exc:
			raise ExternalServiceError(f"certbot renew could not run: {exc}") from exc

		if not result.ok:
			_log.error("CERTBOT_RENEW domain=%s failed (code=%d): %s", primary, result.code, result.last_error_line())
			return CertificateInfo(domain=primary, status="failed", error=result.last_error_line())

		info = await self.read_certificate(primary)
		if not info.is_valid:
			return dataclasses.replace(info, status="failed", error=info.error or f"Renewed certificate is {info.status}")
		try:
			await self.sync.reload()
		except ExternalServiceError as exc:
			_log.warning("CERTBOT_RENEW domain=%s renewed but nginx reload failed: %s", primary, exc)
			info = dataclasses.replace(info, warnings=(*info.warnings, exc.message))
		return info

	async def revoke(self, primary: str) -> None:
		"""Revoke the lineage of ``primary``; no-op when no material exists.

		Raises:
			ExternalServiceError: certbot exited non-zero
		"""
		cert_path = self.live_path(primary)
		if not await asyncio.to_thread(cert_path.exists):
			_log.info("CERTBOT_REVOKE domain=%s no certificate material, nothing to revoke", primary)
			return
		result = await self._certbot(
			"revoke", "--cert-path", str(cert_path), "--non-interactive", "--delete-after-revoke", *self._dir_args(),
		)
		if not result.ok:
			_log.error("CERTBOT_REVOKE domain=%s failed: %s", primary, result.last_error_line())
			raise ExternalServiceError(f"certbot revoke failed: {result.last_error_line()}")
		_log.info("CERTBOT_REVOKE domain=%s revoked", primary)

	async def read_certificate(self, primary: str, domains: Sequence[str] | None = None) -> CertificateInfo:
		"""Inspect ``live/<primary>/fullchain.pem``.

		``pending`` when the file does not exist, ``expired`` once not-after
		has passed, ``failed`` when it cannot be parsed, else ``valid``.
		"""
		return await asyncio.to_thread(self._read_certificate, primary, tuple(domains or ()))

	def _read_certificate(self, primary: str, domains: tuple[str, ...]) -> CertificateInfo:
		path = self.live_path(primary)
		try:
			pem = path.read_bytes()
		except FileNotFoundError:
			return CertificateInfo(domain=primary, status="pending", domains=domains or (primary,))
		except OSError as exc:
			_log.error("CERT_READ domain=%s cannot read %s: %s", primary, path, exc)
			return CertificateInfo(domain=primary, status="failed", domains=domains or (primary,), error=str(exc))

		try:
			cert = x509.load_pem_x509_certificate(pem)
			not_before = cert.not_valid_before_utc
			not_after = cert.not_valid_after_utc
			try:
				san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
				names = tuple(san.get_values_for_type(x509.DNSName))
			except x509.ExtensionNotFound:
				names = ()
		except ValueError as exc:
			_log.error("CERT_READ domain=%s unparsable certificate: %s", primary, exc)
			return CertificateInfo(domain=primary, status="failed", domains=domains or (primary,), error="Unparsable certificate material")

		status = "expired" if not_after <= utcnow() else "valid"
		return CertificateInfo(
			domain=primary,
			status=status,
			expires_at=not_after,
			issued_at=not_before,
			domains=tuple(dedupe_domains(primary, names or domains)),
		)
