#!/usr/bin/env python3
#
# certproxy/models/proxies.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Proxy host Pydantic models and domain validation."""

from __future__ import annotations

import ipaddress
import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .records import ProxyHost

# RFC 1123 labels, at least two of them; HTTP-01 cannot validate wildcards
_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_DOMAIN_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})+$")
_HOSTNAME_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*$")


def validate_domain(v: str) -> str:
	"""Normalize and validate a public DNS name."""
	v = v.strip().lower().rstrip(".")
	if len(v) > 253 or not _DOMAIN_RE.match(v):
		raise ValueError(f"Invalid domain name: {v!r}")
	return v


def validate_target_host(v: str) -> str:
	"""Backend host: an IP address or a (possibly single-label) hostname."""
	v = v.strip()
	try:
		return str(ipaddress.ip_address(v.strip("[]")))
	except ValueError:
		pass
	v = v.lower()
	if len(v) > 253 or not _HOSTNAME_RE.match(v):
		raise ValueError(f"Invalid target host: {v!r}")
	return v


class ProxyCreate(BaseModel):
	"""Proxy creation payload. TLS is switched on by a successful issuance."""
	domain: str = Field(..., min_length=1, max_length=253)
	target_host: str = Field(..., min_length=1, max_length=253)
	target_port: int = Field(..., ge=1, le=65535)

	@field_validator("domain")
	@classmethod
	def domain_valid(cls, v: str) -> str:
		return validate_domain(v)

	@field_validator("target_host")
	@classmethod
	def target_host_valid(cls, v: str) -> str:
		return validate_target_host(v)


class ProxyUpdate(BaseModel):
	"""Proxy update payload; omitted fields are left unchanged.

	``ssl_enabled`` may be switched on only while a valid certificate exists.
	"""
	domain: str | None = Field(None, min_length=1, max_length=253)
	target_host: str | None = Field(None, min_length=1, max_length=253)
	target_port: int | None = Field(None, ge=1, le=65535)
	ssl_enabled: bool | None = None
	status: Literal["active", "inactive"] | None = None

	@field_validator("domain")
	@classmethod
	def domain_valid(cls, v: str | None) -> str | None:
		return None if v is None else validate_domain(v)

	@field_validator("target_host")
	@classmethod
	def target_host_valid(cls, v: str | None) -> str | None:
		return None if v is None else validate_target_host(v)


class ProxyPublic(BaseModel):
	"""Public proxy representation."""
	id: int
	domain: str
	target_host: str
	target_port: int
	ssl_enabled: bool
	status: Literal["active", "inactive", "error"]
	created_at: datetime
	updated_at: datetime

	@classmethod
	def from_record(cls, proxy: ProxyHost) -> "ProxyPublic":
		return cls(
			id=proxy.id,
			domain=proxy.domain,
			target_host=proxy.target_host,
			target_port=proxy.target_port,
			ssl_enabled=proxy.ssl_enabled,
			status=proxy.status,
			created_at=proxy.created_at,
			updated_at=proxy.updated_at,
		)
