#!/usr/bin/env python3
#
# certproxy/api/ssl.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate API routes: request, renew, revoke, delete and status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..models.certificates import (
	CertificatePublic,
	CertificateRequest,
	CertificateRequestResult,
	ReachabilityRequest,
)
from ..models.records import User
from ..services.certificates import CertificateService
from ..utils.deps import get_certificate_service
from ..utils.rate_limit import RATE_LIMIT_ACME, limiter
from .auth import get_current_user
from .response import ok_response

router = APIRouter(tags=["ssl"])


def _result_response(result: CertificateRequestResult, action: str) -> dict:
	# A CA rejection is a recorded outcome, not a request error
	outcome = "failed" if result.status == "failed" else "completed"
	return ok_response(
		message=f"Certificate {action} {outcome}",
		data=result.model_dump(mode="json", exclude={"warnings"}),
		warnings=result.warnings,
	)


@router.get("/certificates")
async def list_certificates(
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	certs = await service.list_certificates(user.id)
	return ok_response(data=[CertificatePublic.from_record(c).model_dump(mode="json") for c in certs])


@router.get("/status/{proxy_id}")
async def certificate_status(
	proxy_id: int,
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	report = await service.get_status(proxy_id, user_id=user.id)
	return ok_response(data=report.model_dump(mode="json"))


@router.post("/reachability")
@limiter.limit(RATE_LIMIT_ACME)
async def test_reachability(
	request: Request,
	payload: ReachabilityRequest,
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	"""Probe ``http://<domain>/`` for each domain before requesting a certificate."""
	results = await service.check_reachability(payload.domains)
	return ok_response(
		data=[r.model_dump(mode="json") for r in results],
		all_reachable=all(r.reachable for r in results),
	)


@router.post("/request/{proxy_id}")
@limiter.limit(RATE_LIMIT_ACME)
async def request_certificate(
	request: Request,
	proxy_id: int,
	payload: CertificateRequest,
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	"""Obtain a certificate for the proxy domain plus ``extra_domains``.

	Returns once the CA answered; ``data.status`` is ``valid`` or ``failed``.
	"""
	result = await service.request_certificate(
		proxy_id,
		payload.extra_domains,
		str(payload.email) if payload.email else None,
		user_id=user.id,
	)
	return _result_response(result, "request")


@router.post("/renew/{proxy_id}")
@limiter.limit(RATE_LIMIT_ACME)
async def renew_certificate(
	request: Request,
	proxy_id: int,
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	result = await service.renew_certificate(proxy_id, user_id=user.id)
	return _result_response(result, "renewal")


@router.post("/revoke/{certificate_id}")
async def revoke_certificate(
	certificate_id: int,
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	warnings = await service.revoke_certificate(certificate_id, user_id=user.id)
	return ok_response(message="Certificate revoked", warnings=warnings)


@router.delete("/certificates/{certificate_id}")
async def delete_certificate(
	certificate_id: int,
	user: User = Depends(get_current_user),
	service: CertificateService = Depends(get_certificate_service),
):
	warnings = await service.delete_certificate(certificate_id, user_id=user.id)
	return ok_response(message="Certificate deleted", warnings=warnings)
