#!/usr/bin/env python3
#
# certproxy/services/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate lifecycle orchestration.

Every issuance or renewal follows the same strictly ordered path::

	gate -> (supersede) -> record pending row -> certbot -> finalize -> nginx

Precondition failures (unknown proxy, pending request, certificate not yet
due) are raised before anything is written. Once a pending row exists the
CA outcome is always persisted as ``valid`` or ``failed``; certbot errors
never reach the caller as exceptions. nginx problems after a successful
issuance are returned as warnings.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Callable, Iterable

from ..acme.certbot import CertbotClient, dedupe_domains
from ..db.store import CertificateStore
from ..errors import ExternalServiceError, NotFoundError, ValidationError
from ..models.certificates import (
	CertificatePublic,
	CertificateRequestResult,
	CertificateStatusReport,
	ReachabilityResult,
	RenewalHealth,
	RenewalStats,
)
from ..models.records import Certificate, CertificateInfo, IssuanceOutcome, ProxyHost
from ..nginx.synchronizer import NginxSynchronizer
from ..utils.config import RENEWAL_THRESHOLD_DAYS
from ..utils.time import days_until, utcnow
from .proxies import apply_proxy_config

_log = logging.getLogger(__name__)

_MAX_HORIZON_DAYS = 365
_CRITICAL_EXPIRY_DAYS = 7
_FAILED_RENEWALS_WARNING = 5


class CertificateService:
	def __init__(
		self,
		store: CertificateStore,
		client: CertbotClient,
		sync: NginxSynchronizer,
		*,
		scheduler_running: Callable[[], bool] = lambda: False,
	) -> None:
		self.store = store
		self.client = client
		self.sync = sync
		self._scheduler_running = scheduler_running

	# -- helpers ----------------------------------------------------------

	async def _get_proxy(self, proxy_id: int, user_id: int | None) -> ProxyHost:
		proxy = await self.store.get_proxy(proxy_id, user_id)
		if proxy is None:
			raise NotFoundError("Proxy not found")
		return proxy

	async def _get_certificate(self, certificate_id: int, user_id: int | None) -> Certificate:
		cert = await self.store.get(certificate_id, user_id)
		if cert is None:
			raise NotFoundError("SSL certificate not found")
		return cert

	@staticmethod
	def _check_gate(current: Certificate | None) -> None:
		"""Refuse a new issuance while one is pending or the live one is not due."""
		if current is None:
			return
		if current.status == "pending":
			raise ValidationError("SSL certificate request is already pending")
		if current.status == "valid":
			days = days_until(current.expires_at)
			if days > RENEWAL_THRESHOLD_DAYS:
				raise ValidationError(
					f"SSL certificate is still valid for {days} days. "
					f"Renewal is only allowed within {RENEWAL_THRESHOLD_DAYS} days of expiry."
				)

	async def _abandon(self, certificate_id: int, domain: str, message: str, *, renewal: bool = False) -> None:
		"""Resolve a pending row whose certbot run was cancelled or timed out.

		The writes are shielded so a second cancellation cannot leave the row
		``pending``; the caller re-raises the cancellation afterwards.
		"""
		_log.error("CERT_ISSUE certificate=%d domain=%s %s", certificate_id, domain, message.lower())

		async def _record() -> None:
			await self.store.finalize(certificate_id, IssuanceOutcome(status="failed", error=message))
			if renewal:
				await self.store.append_renewal_log(domain, "error", message)

		await asyncio.shield(_record())

	async def _sync_proxy(self, proxy_id: int) -> list[str]:
		proxy = await self.store.get_proxy(proxy_id)
		if proxy is None:
			return []
		_, warnings = await apply_proxy_config(self.store, self.sync, proxy)
		return warnings

	# -- issuance ---------------------------------------------------------

	async def request_certificate(
		self,
		proxy_id: int,
		extra_domains: Iterable[str] = (),
		email: str | None = None,
		*,
		user_id: int | None = None,
	) -> CertificateRequestResult:
		"""Issue a certificate for a proxy's domain plus ``extra_domains``.

		Raises:
			NotFoundError: unknown proxy
			ValidationError: a request is pending, or the valid certificate has
				more than 30 days left
			ConflictError: a concurrent request won the race
		"""
		proxy = await self._get_proxy(proxy_id, user_id)
		current = await self.store.current_for_proxy(proxy.id)
		self._check_gate(current)
		if current is not None and current.status == "valid":
			await self.store.supersede(proxy.id)

		sans = dedupe_domains(proxy.domain, extra_domains)[1:]
		certificate_id = await self.store.record_issuance_attempt(proxy.id, proxy.domain, sans)
		_log.info("CERT_REQUEST certificate=%d proxy=%d domains=%s", certificate_id, proxy.id, ",".join([proxy.domain, *sans]))

		try:
			info = await self.client.obtain(proxy.domain, sans, email)
		except asyncio.CancelledError:
			await self._abandon(certificate_id, proxy.domain, "Certificate request was cancelled")
			raise
		except Exception as exc:
			_log.exception("CERT_REQUEST certificate=%d certbot client error", certificate_id)
			info = CertificateInfo(domain=proxy.domain, status="failed", error=str(exc))

		cert = await self.store.finalize(certificate_id, IssuanceOutcome.from_info(info))
		warnings = list(info.warnings)
		if cert.status == "valid":
			warnings += await self._sync_proxy(proxy.id)
		else:
			_log.warning("CERT_REQUEST certificate=%d failed: %s", certificate_id, info.error)

		return CertificateRequestResult(
			certificate_id=cert.id,
			status=cert.status,
			domain=cert.domain,
			extra_domains=list(cert.extra_domains),
			warnings=warnings,
		)

	async def renew_certificate(self, proxy_id: int, *, user_id: int | None = None) -> CertificateRequestResult:
		"""Renew the current certificate of a proxy.

		Raises:
			NotFoundError: unknown proxy or no certificate at all
			ValidationError: same gate as ``request_certificate``
		"""
		proxy = await self._get_proxy(proxy_id, user_id)
		current = await self.store.current_for_proxy(proxy.id)
		if current is None:
			raise NotFoundError("No SSL certificate found for this proxy")
		self._check_gate(current)
		return await self.renew_lineage(proxy, current)

	async def renew_lineage(self, proxy: ProxyHost, previous: Certificate) -> CertificateRequestResult:
		"""Supersede ``previous``, insert its replacement and run ``certbot renew``.

		Shared by manual renewals and the scheduled sweep; appends a renewal
		log entry: ``success``, ``failed`` for a clean negative result,
		``error`` when the attempt itself raised.
		"""
		await self.store.supersede(proxy.id)
		certificate_id = await self.store.record_issuance_attempt(proxy.id, proxy.domain, previous.extra_domains)
		_log.info("CERT_RENEW certificate=%d replaces=%d domain=%s", certificate_id, previous.id, proxy.domain)

		try:
			info = await self.client.renew(proxy.domain)
		except asyncio.CancelledError:
			await self._abandon(certificate_id, proxy.domain, "Certificate renewal was cancelled", renewal=True)
			raise
		except Exception as exc:
			_log.exception("CERT_RENEW certificate=%d domain=%s error", certificate_id, proxy.domain)
			message = str(exc) or exc.__class__.__name__
			cert = await self.store.finalize(certificate_id, IssuanceOutcome(status="failed", error=message))
			await self.store.append_renewal_log(proxy.domain, "error", message)
			return CertificateRequestResult(
				certificate_id=cert.id,
				status=cert.status,
				domain=cert.domain,
				extra_domains=list(cert.extra_domains),
			)

		outcome = IssuanceOutcome.from_info(info)
		cert = await self.store.finalize(certificate_id, outcome)
		await self.store.append_renewal_log(
			proxy.domain,
			"success" if cert.status == "valid" else "failed",
			outcome.error,
		)

		warnings = list(info.warnings)
		if cert.status == "valid" and not proxy.ssl_enabled:
			warnings += await self._sync_proxy(proxy.id)
		_log.info("CERT_RENEW certificate=%d domain=%s status=%s", cert.id, proxy.domain, cert.status)
		return CertificateRequestResult(
			certificate_id=cert.id,
			status=cert.status,
			domain=cert.domain,
			extra_domains=list(cert.extra_domains),
			warnings=warnings,
		)

	# -- revoke / delete --------------------------------------------------

	async def revoke_certificate(self, certificate_id: int, *, user_id: int | None = None) -> list[str]:
		"""Revoke a ``valid`` certificate at the CA and fall back to plain HTTP.

		Raises:
			NotFoundError: unknown certificate
			ValidationError: the certificate is not valid
			ExternalServiceError: certbot refused the revocation
		"""
		cert = await self._get_certificate(certificate_id, user_id)
		if cert.status != "valid":
			raise ValidationError("Only valid certificates can be revoked")
		await self.client.revoke(cert.domain)
		await self.store.revoke(certificate_id)
		_log.info("CERT_REVOKE certificate=%d domain=%s", certificate_id, cert.domain)
		return await self._sync_proxy(cert.proxy_id)

	async def delete_certificate(self, certificate_id: int, *, user_id: int | None = None) -> list[str]:
		"""Delete a certificate row; a valid one is revoked first on a best-effort basis."""
		cert = await self._get_certificate(certificate_id, user_id)
		warnings: list[str] = []
		if cert.status == "valid":
			try:
				await self.client.revoke(cert.domain)
			except ExternalServiceError as exc:
				_log.warning("CERT_DELETE certificate=%d revoke failed, deleting anyway: %s", certificate_id, exc)
				warnings.append(f"Certificate could not be revoked: {exc.message}")
		await self.store.delete(certificate_id)
		_log.info("CERT_DELETE certificate=%d domain=%s", certificate_id, cert.domain)
		if cert.status == "valid":
			warnings += await self._sync_proxy(cert.proxy_id)
		return warnings

	# -- queries ----------------------------------------------------------

	async def get_status(self, proxy_id: int, *, user_id: int | None = None) -> CertificateStatusReport:
		proxy = await self._get_proxy(proxy_id, user_id)
		current = await self.store.current_for_proxy(proxy.id)
		if current is None:
			return CertificateStatusReport(proxy_id=proxy.id, domain=proxy.domain, ssl_status="none")
		now = utcnow()
		days = days_until(current.expires_at, now)
		return CertificateStatusReport(
			proxy_id=proxy.id,
			domain=proxy.domain,
			ssl_status=current.status,
			certificate=CertificatePublic.from_record(current, now),
			days_until_expiry=days,
			is_expired=current.status == "expired" or current.expires_at <= now,
			needs_renewal=days <= RENEWAL_THRESHOLD_DAYS,
		)

	async def list_certificates(self, user_id: int) -> list[Certificate]:
		return await self.store.list_for_user(user_id)

	async def list_expiring_soon(self, horizon_days: int = RENEWAL_THRESHOLD_DAYS) -> list[Certificate]:
		horizon = max(1, min(int(horizon_days), _MAX_HORIZON_DAYS))
		return await self.store.find_expiring_soon(horizon)

	async def check_reachability(self, domains: Iterable[str]) -> list[ReachabilityResult]:
		"""Probe all domains concurrently; results keep the input order."""
		return list(await asyncio.gather(*(self.client.test_reachability(d) for d in domains)))

	async def get_renewal_stats(self) -> RenewalStats:
		expiring = await self.store.find_expiring_soon(RENEWAL_THRESHOLD_DAYS)
		recent = await self.store.count_renewals_by_status(utcnow() - timedelta(days=7))
		return RenewalStats(
			certificates_expiring_soon=len(expiring),
			recent_renewals_by_status=recent,
			scheduler_running=self._scheduler_running(),
		)

	async def get_renewal_health(self) -> RenewalHealth:
		"""Summarize renewal health: ``critical`` when the scheduler is down,
		``warning`` on certificates expiring within 7 days, stale valid rows
		or more than 5 failed renewals in 7 days."""
		now = utcnow()
		stats = await self.get_renewal_stats()
		last_day = await self.store.count_renewals_by_status(now - timedelta(hours=24))
		last_week = await self.store.count_renewals_by_status(now - timedelta(days=7))
		critical = await self.store.find_expiring_soon(_CRITICAL_EXPIRY_DAYS)
		stale = await self.store.find_expired_valid()

		failed_7d = last_week.get("failed", 0) + last_week.get("error", 0)
		if not stats.scheduler_running:
			status = "critical"
		elif critical or stale or failed_7d > _FAILED_RENEWALS_WARNING:
			status = "warning"
		else:
			status = "healthy"

		return RenewalHealth(
			status=status,
			scheduler_running=stats.scheduler_running,
			recent_activity=sum(last_day.values()),
			failed_renewals_7d=failed_7d,
			critical_expiring=len(critical),
			certificates_expiring_30d=stats.certificates_expiring_soon,
			expired_still_valid=len(stale),
		)
