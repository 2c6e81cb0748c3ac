#!/usr/bin/env python3
#
# certproxy/acme/reachability.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pre-flight HTTP probe before spending CA rate-limit budget on a domain."""

from __future__ import annotations

import logging
from typing import Awaitable, Protocol

import httpx

from ..models.certificates import ReachabilityResult
from ..utils.config import REACHABILITY_TIMEOUT_SECONDS

_log = logging.getLogger(__name__)

_USER_AGENT = "CertProxy/1.0 reachability-check"


class Prober(Protocol):
	def __call__(self, domain: str, timeout: float = ...) -> Awaitable[ReachabilityResult]: ...


async def probe_domain(
	domain: str,
	timeout: float = REACHABILITY_TIMEOUT_SECONDS,
	*,
	transport: httpx.AsyncBaseTransport | None = None,
) -> ReachabilityResult:
	"""GET ``http://<domain>:80/`` and classify the outcome.

	Any HTTP response, including 4xx/5xx, proves the name resolves and
	something answers on port 80, which is all HTTP-01 needs. Redirects are
	not followed. Never raises and never waits longer than ``timeout``.
	"""
	url = f"http://{domain}:80/"
	try:
		async with httpx.AsyncClient(
			timeout=timeout,
			follow_redirects=False,
			transport=transport,
			headers={"User-Agent": _USER_AGENT},
		) as client:
			resp = await client.get(url)
	except httpx.TimeoutException:
		_log.info("REACHABILITY domain=%s timeout after %.1fs", domain, timeout)
		return ReachabilityResult(domain=domain, reachable=False, error="timeout")
	except (httpx.HTTPError, OSError) as exc:
		message = str(exc) or exc.__class__.__name__
		_log.info("REACHABILITY domain=%s unreachable: %s", domain, message)
		return ReachabilityResult(domain=domain, reachable=False, error=message)

	_log.debug("REACHABILITY domain=%s status=%d", domain, resp.status_code)
	return ReachabilityResult(domain=domain, reachable=True, status_code=resp.status_code)
