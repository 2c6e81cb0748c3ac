#!/usr/bin/env python3
#
# certproxy/acme/challenge.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Temporary HTTP-01 challenge routing through nginx."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from types import TracebackType

from ..errors import ExternalServiceError
from ..nginx.synchronizer import NginxSynchronizer

_log = logging.getLogger(__name__)


class AcmeChallengeRoute:
	"""Async context manager exposing ``/.well-known/acme-challenge/`` for ``domains``.

	Usage::

		async with AcmeChallengeRoute(sync, domains):
			await run_certbot(...)

	Teardown runs on every exit path, including cancellation and a failed
	setup. Teardown errors are logged and never replace the exception that
	left the block.
	"""

	def __init__(self, sync: NginxSynchronizer, domains: Sequence[str]) -> None:
		if not domains:
			raise ValueError("At least one domain is required")
		self._sync = sync
		self.domains = list(domains)

	async def setup(self) -> None:
		await asyncio.to_thread(self._sync.webroot.mkdir, parents=True, exist_ok=True)
		await self._sync.install_acme_challenge(self.domains)
		await self._sync.reload()
		_log.info("ACME_CHALLENGE routing enabled for %s", ", ".join(self.domains))

	async def teardown(self) -> None:
		try:
			await self._sync.remove_acme_challenge(self.domains[0])
			await self._sync.reload()
			_log.info("ACME_CHALLENGE routing removed for %s", self.domains[0])
		except (OSError, ValueError, ExternalServiceError) as exc:
			_log.error("ACME_CHALLENGE teardown failed for %s: %s", self.domains[0], exc)

	async def __aenter__(self) -> "AcmeChallengeRoute":
		try:
			await self.setup()
		except BaseException:
			await self.teardown()
			raise
		return self

	async def __aexit__(
		self,
		exc_type: type[BaseException] | None,
		exc: BaseException | None,
		tb: TracebackType | None,
	) -> None:
		await self.teardown()
