#!/usr/bin/env python3
#
# certproxy/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic payloads and typed records for CertProxy."""

from .certificates import (
	CertificatePublic,
	CertificateRequest,
	CertificateRequestResult,
	CertificateStatusReport,
	ReachabilityRequest,
	ReachabilityResult,
	RenewalHealth,
	RenewalLogPublic,
	RenewalStats,
)
from .proxies import ProxyCreate, ProxyPublic, ProxyUpdate
from .records import (
	Certificate,
	CertificateInfo,
	IssuanceOutcome,
	ProxyHost,
	RenewalLogEntry,
	User,
)
from .users import LoginRequest, TokenResponse, UserPublic

__all__ = [
	# Records
	"Certificate",
	"CertificateInfo",
	"IssuanceOutcome",
	"ProxyHost",
	"RenewalLogEntry",
	"User",
	# Users
	"LoginRequest",
	"TokenResponse",
	"UserPublic",
	# Proxies
	"ProxyCreate",
	"ProxyPublic",
	"ProxyUpdate",
	# Certificates
	"CertificatePublic",
	"CertificateRequest",
	"CertificateRequestResult",
	"CertificateStatusReport",
	"ReachabilityRequest",
	"ReachabilityResult",
	"RenewalHealth",
	"RenewalLogPublic",
	"RenewalStats",
]
