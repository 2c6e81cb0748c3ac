#!/usr/bin/env python3
#
# certproxy/utils/scheduler.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Async in-process scheduler for background jobs.

Two kinds of schedule exist: a fixed interval (with exponential backoff
after failures) and a daily UTC wall-clock slot. Each job gets its own
task; a single stop event wakes every sleeping job at shutdown.

	scheduler = Scheduler()
	scheduler.add("session-cleanup", 3600, cleanup, run_on_start=True)
	scheduler.add_daily("certificate-renewal", time(2, 0), sweep)
	await scheduler.start()
	...
	await scheduler.stop_graceful()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, TypedDict

from .time import next_daily_run, utcnow

_log = logging.getLogger(__name__)

__all__ = ["JobStatus", "Scheduler"]

JobFunc = Callable[[], Awaitable[None]]

_MIN_INTERVAL = 1.0
_MAX_BACKOFF = 300.0


class JobStatus(TypedDict):
	name: str
	interval_seconds: float | None
	daily_at_utc: str | None
	next_run: str | None
	last_success: str | None
	last_attempt: str | None
	is_running: bool
	run_count: int
	fail_count: int


def _iso(value: datetime | None) -> str | None:
	return value.isoformat() if value else None


@dataclass
class _Job:
	name: str
	func: JobFunc
	every: float | None = None
	daily_at: time | None = None
	run_on_start: bool = False
	initial_delay: float = 0.0
	timeout: float | None = None
	next_run: datetime | None = None
	last_success: datetime | None = None
	last_attempt: datetime | None = None
	run_count: int = 0
	fail_count: int = 0
	streak: int = field(default=0, repr=False)

	def plan_next(self) -> float:
		"""Set ``next_run`` and return the seconds to wait for it."""
		now = utcnow()
		if self.daily_at is not None:
			# a failed daily run waits for the next slot, no backoff
			self.next_run = next_daily_run(self.daily_at, now)
		else:
			wait = self.every
			if self.streak:
				wait = max(wait, min(2.0 ** self.streak, _MAX_BACKOFF))
			self.next_run = now + timedelta(seconds=wait)
		return (self.next_run - now).total_seconds()

	def describe(self) -> str:
		if self.daily_at is not None:
			return f"daily_at={self.daily_at:%H:%M} UTC"
		return f"interval={self.every:g}s"


class Scheduler:
	"""Runs registered jobs until stopped. Jobs can only be added while stopped."""

	def __init__(self) -> None:
		self._jobs: dict[str, _Job] = {}
		self._tasks: dict[str, asyncio.Task] = {}
		self._stopping = asyncio.Event()
		self._running = False

	@property
	def is_running(self) -> bool:
		return self._running

	# -- registration -----------------------------------------------------

	def _register(self, job: _Job) -> None:
		if self._running:
			raise RuntimeError(f"Cannot add job {job.name!r} while scheduler is running")
		if job.name in self._jobs:
			raise ValueError(f"Job {job.name!r} is already registered")
		if job.initial_delay < 0:
			raise ValueError(f"initial_delay must be >= 0, got {job.initial_delay}")
		if job.initial_delay and not job.run_on_start:
			raise ValueError("initial_delay requires run_on_start=True")
		self._jobs[job.name] = job

	def add(
		self,
		name: str,
		interval_seconds: float,
		func: JobFunc,
		*,
		run_on_start: bool = False,
		initial_delay: float = 0.0,
		timeout: float | None = None,
	) -> None:
		"""Run ``func`` every ``interval_seconds`` (at least one second).

		After consecutive failures the wait grows as 2^n seconds, capped at
		five minutes, and is never shorter than the interval.
		"""
		if interval_seconds < _MIN_INTERVAL:
			raise ValueError(f"interval_seconds must be >= {_MIN_INTERVAL}, got {interval_seconds}")
		self._register(_Job(
			name, func,
			every=float(interval_seconds),
			run_on_start=run_on_start,
			initial_delay=initial_delay,
			timeout=timeout,
		))

	def add_daily(self, name: str, at: time, func: JobFunc, *, timeout: float | None = None) -> None:
		"""Run ``func`` once a day at ``at`` (UTC)."""
		self._register(_Job(name, func, daily_at=at, timeout=timeout))

	# -- lifecycle --------------------------------------------------------

	async def start(self) -> None:
		if self._running:
			_log.info("SCHEDULER already running")
			return
		self._running = True
		self._stopping = asyncio.Event()
		for job in self._jobs.values():
			self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"scheduler:{job.name}")
			_log.info("SCHEDULER job=%s %s started", job.name, job.describe())

	async def stop_graceful(self, timeout: float | None = 5.0) -> None:
		"""Signal all jobs to stop; cancel whatever is still busy after ``timeout``.

		With ``timeout=None`` a running job is always allowed to finish.
		"""
		if not self._running:
			return
		self._running = False
		self._stopping.set()

		busy = [t for t in self._tasks.values() if not t.done()]
		if busy:
			_, stuck = await asyncio.wait(busy, timeout=timeout)
			for task in stuck:
				task.cancel()
			if stuck:
				_log.warning("SCHEDULER cancelled %d jobs that did not stop in %.1fs", len(stuck), timeout)
				await asyncio.gather(*stuck, return_exceptions=True)
		self._tasks.clear()
		_log.info("SCHEDULER stopped")

	async def _sleep(self, seconds: float) -> bool:
		"""Wait up to ``seconds``; True when the scheduler is stopping."""
		try:
			await asyncio.wait_for(self._stopping.wait(), timeout=max(0.0, seconds))
		except asyncio.TimeoutError:
			pass
		return not self._running

	async def _loop(self, job: _Job) -> None:
		try:
			if job.run_on_start:
				if await self._sleep(job.initial_delay):
					return
				await self._run_once(job)
			while not await self._sleep(job.plan_next()):
				await self._run_once(job)
		except asyncio.CancelledError:
			_log.debug("SCHEDULER job=%s cancelled", job.name)
		except Exception:
			_log.exception("SCHEDULER job=%s loop crashed", job.name)

	async def _run_once(self, job: _Job) -> None:
		job.last_attempt = utcnow()
		try:
			await asyncio.wait_for(job.func(), timeout=job.timeout)
		except asyncio.TimeoutError:
			job.fail_count += 1
			job.streak += 1
			_log.error("SCHEDULER job=%s timed out after %.1fs (%d in a row)", job.name, job.timeout, job.streak)
			return
		except Exception:
			job.fail_count += 1
			job.streak += 1
			_log.exception("SCHEDULER job=%s failed (%d in a row)", job.name, job.streak)
			return
		job.streak = 0
		job.run_count += 1
		job.last_success = utcnow()
		_log.info("SCHEDULER job=%s completed (run #%d)", job.name, job.run_count)

	# -- monitoring -------------------------------------------------------

	def get_status(self) -> list[JobStatus]:
		status: list[JobStatus] = []
		for job in self._jobs.values():
			task = self._tasks.get(job.name)
			status.append(JobStatus(
				name=job.name,
				interval_seconds=job.every,
				daily_at_utc=job.daily_at.strftime("%H:%M") if job.daily_at else None,
				next_run=_iso(job.next_run) if self._running else None,
				last_success=_iso(job.last_success),
				last_attempt=_iso(job.last_attempt),
				is_running=task is not None and not task.done(),
				run_count=job.run_count,
				fail_count=job.fail_count,
			))
		return status
