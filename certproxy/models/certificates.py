#!/usr/bin/env python3
#
# certproxy/models/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate and renewal Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..utils.time import days_until
from .proxies import validate_domain
from .records import Certificate, RenewalLogEntry

# Let's Encrypt allows 100 names per certificate, one is the primary
MAX_EXTRA_DOMAINS = 99


class CertificateRequest(BaseModel):
	"""Payload for requesting a certificate for a proxy."""
	extra_domains: list[str] = Field(default_factory=list, max_length=MAX_EXTRA_DOMAINS)
	email: EmailStr | None = None

	@field_validator("extra_domains")
	@classmethod
	def domains_valid(cls, v: list[str]) -> list[str]:
		return [validate_domain(d) for d in v]


class ReachabilityRequest(BaseModel):
	domains: list[str] = Field(..., min_length=1, max_length=20)

	@field_validator("domains")
	@classmethod
	def domains_valid(cls, v: list[str]) -> list[str]:
		return [validate_domain(d) for d in v]


class ReachabilityResult(BaseModel):
	"""Outcome of a plain HTTP probe on port 80.

	Any HTTP response counts as reachable; ``error`` is ``"timeout"`` or the
	connection error message otherwise.
	"""
	domain: str
	reachable: bool
	status_code: int | None = None
	error: str | None = None


class CertificatePublic(BaseModel):
	"""Public certificate representation."""
	id: int
	proxy_id: int
	domain: str
	extra_domains: list[str]
	status: Literal["pending", "valid", "expired", "failed", "revoked"]
	expires_at: datetime
	issued_at: datetime | None = None
	created_at: datetime
	updated_at: datetime
	days_until_expiry: int

	@classmethod
	def from_record(cls, cert: Certificate, now: datetime | None = None) -> "CertificatePublic":
		return cls(
			id=cert.id,
			proxy_id=cert.proxy_id,
			domain=cert.domain,
			extra_domains=list(cert.extra_domains),
			status=cert.status,
			expires_at=cert.expires_at,
			issued_at=cert.issued_at,
			created_at=cert.created_at,
			updated_at=cert.updated_at,
			days_until_expiry=days_until(cert.expires_at, now),
		)


class CertificateRequestResult(BaseModel):
	"""Returned by request and renew; ``status`` is the row's status after the CA call."""
	certificate_id: int
	status: Literal["pending", "valid", "failed"]
	domain: str
	extra_domains: list[str] = Field(default_factory=list)
	warnings: list[str] = Field(default_factory=list)


class CertificateStatusReport(BaseModel):
	proxy_id: int
	domain: str
	ssl_status: Literal["none", "pending", "valid", "expired", "failed", "revoked"]
	certificate: CertificatePublic | None = None
	days_until_expiry: int | None = None
	is_expired: bool = False
	needs_renewal: bool = False


class RenewalLogPublic(BaseModel):
	id: int
	domain: str
	status: Literal["success", "failed", "error"]
	error_message: str | None = None
	created_at: datetime

	@classmethod
	def from_record(cls, entry: RenewalLogEntry) -> "RenewalLogPublic":
		return cls(
			id=entry.id,
			domain=entry.domain,
			status=entry.status,
			error_message=entry.error_message,
			created_at=entry.created_at,
		)


class RenewalStats(BaseModel):
	certificates_expiring_soon: int
	recent_renewals_by_status: dict[str, int]
	scheduler_running: bool


class RenewalHealth(BaseModel):
	status: Literal["healthy", "warning", "critical"]
	scheduler_running: bool
	recent_activity: int
	failed_renewals_7d: int
	critical_expiring: int
	certificates_expiring_30d: int
	expired_still_valid: int
