#!/usr/bin/env python3
#
# certproxy/api/renewal.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Renewal monitoring API routes."""

from __future__ import annotations

import dataclasses

from fastapi import APIRouter, Depends, Query

from ..db.store import CertificateStore
from ..models.certificates import CertificatePublic, RenewalLogPublic
from ..models.records import User
from ..services.certificates import CertificateService
from ..tasks.renewal import RenewalScheduler
from ..utils.config import RENEWAL_THRESHOLD_DAYS
from ..utils.deps import get_certificate_service, get_renewal_scheduler, get_store
from .auth import get_current_user, require_admin
from .response import ok_response

router = APIRouter(tags=["renewal"])


@router.get("/stats")
async def renewal_stats(
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	stats = await service.get_renewal_stats()
	return ok_response(data=stats.model_dump(mode="json"))


@router.get("/logs")
async def renewal_logs(
	page: int = Query(1, ge=1),
	limit: int = Query(50, ge=1, le=200),
	user: User = Depends(get_current_user),
	store: CertificateStore = Depends(get_store),
):
	entries, total = await store.list_renewal_logs(page, limit)
	return ok_response(
		data=[RenewalLogPublic.from_record(e).model_dump(mode="json") for e in entries],
		pagination={
			"page": page,
			"limit": limit,
			"total": total,
			"pages": (total + limit - 1) // limit,
		},
	)


@router.get("/logs/{domain}")
async def renewal_logs_for_domain(
	domain: str,
	user: User = Depends(get_current_user),
	store: CertificateStore = Depends(get_store),
):
	entries = await store.list_renewal_logs_for_domain(domain.strip().lower())
	return ok_response(data=[RenewalLogPublic.from_record(e).model_dump(mode="json") for e in entries])


@router.post("/check")
async def force_renewal_check(
	user: User = Depends(require_admin),
	renewal: RenewalScheduler = Depends(get_renewal_scheduler),
):
	"""Run a renewal sweep now instead of waiting for the daily slot."""
	result = await renewal.force_renewal_check()
	return ok_response(message="Renewal check completed", data=dataclasses.asdict(result))


@router.get("/expiring")
async def expiring_certificates(
	days: int = Query(RENEWAL_THRESHOLD_DAYS),
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	"""Valid certificates expiring within ``days`` (clamped to 1..365)."""
	certs = await service.list_expiring_soon(days)
	return ok_response(data=[CertificatePublic.from_record(c).model_dump(mode="json") for c in certs])


@router.get("/health")
async def renewal_health(
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	health = await service.get_renewal_health()
	return ok_response(data=health.model_dump(mode="json"))
