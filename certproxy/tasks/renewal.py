#!/usr/bin/env python3
#
# certproxy/tasks/renewal.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Daily certificate renewal sweep."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import time

from ..services.certificates import CertificateService
from ..utils.config import RENEWAL_THRESHOLD_DAYS
from ..utils.scheduler import JobStatus, Scheduler

_log = logging.getLogger(__name__)

__all__ = ["RenewalScheduler", "RenewalSweepResult"]

_JOB_NAME = "certificate-renewal"


@dataclass
class RenewalSweepResult:
	checked: int = 0
	renewed: int = 0
	failed: int = 0
	errors: list[str] = field(default_factory=list)


class RenewalScheduler:
	"""Runs one renewal sweep per day at ``hour_utc``:00 UTC.

	A sweep renews every valid certificate expiring within 30 days, one
	after the other. A failing candidate is logged and recorded; it never
	stops the sweep. Manual sweeps (``force_renewal_check``) and scheduled
	ones never overlap.
	"""

	def __init__(self, service: CertificateService, *, hour_utc: int = 2) -> None:
		self.service = service
		self.hour_utc = hour_utc
		self._sweep_lock = asyncio.Lock()
		self._closing = False
		self._scheduler = Scheduler()
		self._scheduler.add_daily(_JOB_NAME, time(hour=hour_utc), self._scheduled_sweep)

	@property
	def is_running(self) -> bool:
		return self._scheduler.is_running

	async def start(self) -> None:
		"""Start the daily job. Calling it twice is a no-op."""
		self._closing = False
		await self._scheduler.start()
		_log.info("RENEWAL scheduler started, daily at %02d:00 UTC", self.hour_utc)

	async def stop(self) -> None:
		"""Stop the daily trigger and wait for a sweep that is already running.

		The running sweep finishes its current certificate and skips the rest;
		nothing is cancelled mid-certbot.
		"""
		if not self._scheduler.is_running:
			return
		self._closing = True
		await self._scheduler.stop_graceful(timeout=None)

	def get_status(self) -> list[JobStatus]:
		return self._scheduler.get_status()

	async def _scheduled_sweep(self) -> None:
		await self.force_renewal_check()

	async def force_renewal_check(self) -> RenewalSweepResult:
		"""Run a sweep now and report what happened."""
		async with self._sweep_lock:
			return await self._sweep()

	async def _sweep(self) -> RenewalSweepResult:
		result = RenewalSweepResult()
		store = self.service.store

		stale = await store.mark_passively_expired()
		if stale:
			_log.warning("RENEWAL marked %d certificates past their expiry as expired", stale)

		candidates = await store.find_expiring_soon(RENEWAL_THRESHOLD_DAYS)
		result.checked = len(candidates)
		_log.info("RENEWAL sweep found %d certificates due for renewal", len(candidates))

		for index, cert in enumerate(candidates):
			if self._closing:
				_log.info("RENEWAL scheduler stopping, %d certificates left for the next sweep", len(candidates) - index)
				break
			try:
				proxy = await store.get_proxy(cert.proxy_id)
				if proxy is None:
					# Proxy vanished between the query and now; cascade removed the row
					continue
				outcome = await self.service.renew_lineage(proxy, cert)
			except Exception as exc:
				result.failed += 1
				message = str(exc) or exc.__class__.__name__
				result.errors.append(f"{cert.domain}: {message}")
				_log.exception("RENEWAL domain=%s renewal raised", cert.domain)
				try:
					await store.append_renewal_log(cert.domain, "error", message)
				except Exception:
					_log.exception("RENEWAL domain=%s could not record renewal error", cert.domain)
				continue

			if outcome.status == "valid":
				result.renewed += 1
			else:
				result.failed += 1
				result.errors.append(f"{cert.domain}: renewal {outcome.status}")

		_log.info(
			"RENEWAL sweep finished: checked=%d renewed=%d failed=%d",
			result.checked, result.renewed, result.failed,
		)
		return result
