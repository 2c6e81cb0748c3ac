#!/usr/bin/env python3
#
# certproxy/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from fastapi import Request

from ..db.store import CertificateStore
from ..services.certificates import CertificateService
from ..services.proxies import ProxyService
from ..tasks.renewal import RenewalScheduler


def get_store(request: Request) -> CertificateStore:
	return request.app.state.store


def get_certificate_service(request: Request) -> CertificateService:
	return request.app.state.certificates


def get_proxy_service(request: Request) -> ProxyService:
	return request.app.state.proxies


def get_renewal_scheduler(request: Request) -> RenewalScheduler:
	return request.app.state.renewal
