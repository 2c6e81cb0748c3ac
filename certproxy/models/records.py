#!/usr/bin/env python3
#
# certproxy/models/records.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Typed records for rows and results that cross module boundaries.

Nothing outside ``certproxy.db`` sees a ``sqlite3.Row``; each query result
is converted into one of these frozen dataclasses.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

CertificateStatus = Literal["pending", "valid", "expired", "failed", "revoked"]
ProxyStatus = Literal["active", "inactive", "error"]
RenewalStatus = Literal["success", "failed", "error"]


@dataclass(frozen=True)
class User:
	id: int
	username: str
	password_hash: str
	is_admin: bool
	is_active: bool
	created_at: datetime
	last_login_at: datetime | None = None

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "User":
		return cls(
			id=row["id"],
			username=row["username"],
			password_hash=row["password_hash"],
			is_admin=bool(row["is_admin"]),
			is_active=bool(row["is_active"]),
			created_at=row["created_at"],
			last_login_at=row["last_login_at"],
		)


@dataclass(frozen=True)
class ProxyHost:
	"""Domain-to-backend mapping owned by one user."""
	id: int
	user_id: int
	domain: str
	target_host: str
	target_port: int
	ssl_enabled: bool
	status: ProxyStatus
	created_at: datetime
	updated_at: datetime

	@property
	def is_active(self) -> bool:
		return self.status == "active"

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "ProxyHost":
		return cls(
			id=row["id"],
			user_id=row["user_id"],
			domain=row["domain"],
			target_host=row["target_host"],
			target_port=row["target_port"],
			ssl_enabled=bool(row["ssl_enabled"]),
			status=row["status"],
			created_at=row["created_at"],
			updated_at=row["updated_at"],
		)


@dataclass(frozen=True)
class Certificate:
	"""One issuance lineage row. ``extra_domains`` are the SANs besides ``domain``."""
	id: int
	proxy_id: int
	domain: str
	status: CertificateStatus
	expires_at: datetime
	issued_at: datetime | None
	created_at: datetime
	updated_at: datetime
	extra_domains: tuple[str, ...] = ()

	@property
	def all_domains(self) -> list[str]:
		return [self.domain, *(d for d in self.extra_domains if d != self.domain)]

	@classmethod
	def from_row(cls, row: sqlite3.Row, extra_domains: tuple[str, ...] = ()) -> "Certificate":
		return cls(
			id=row["id"],
			proxy_id=row["proxy_id"],
			domain=row["domain"],
			status=row["status"],
			expires_at=row["expires_at"],
			issued_at=row["issued_at"],
			created_at=row["created_at"],
			updated_at=row["updated_at"],
			extra_domains=extra_domains,
		)


@dataclass(frozen=True)
class RenewalLogEntry:
	id: int
	domain: str
	status: RenewalStatus
	error_message: str | None
	created_at: datetime

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "RenewalLogEntry":
		return cls(
			id=row["id"],
			domain=row["domain"],
			status=row["status"],
			error_message=row["error_message"],
			created_at=row["created_at"],
		)


@dataclass(frozen=True)
class CertificateInfo:
	"""What certbot plus the on-disk material say about one certificate.

	``status`` is ``pending`` when no material exists yet.
	"""
	domain: str
	status: CertificateStatus
	expires_at: datetime | None = None
	issued_at: datetime | None = None
	domains: tuple[str, ...] = ()
	error: str | None = None
	warnings: tuple[str, ...] = ()

	@property
	def is_valid(self) -> bool:
		return self.status == "valid"


@dataclass(frozen=True)
class IssuanceOutcome:
	"""Resolved result handed to ``finalize``; expiry is required when valid."""
	status: Literal["valid", "failed"]
	expires_at: datetime | None = None
	issued_at: datetime | None = None
	domains: tuple[str, ...] = field(default=())
	error: str | None = None

	def __post_init__(self) -> None:
		if self.status == "valid" and self.expires_at is None:
			raise ValueError("A valid outcome needs the certificate's expiry")

	@classmethod
	def from_info(cls, info: CertificateInfo) -> "IssuanceOutcome":
		"""Collapse a certbot result into valid/failed."""
		if info.is_valid:
			return cls(
				status="valid",
				expires_at=info.expires_at,
				issued_at=info.issued_at,
				domains=info.domains,
			)
		return cls(status="failed", error=info.error or f"certificate is {info.status}")
