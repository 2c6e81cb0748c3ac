#!/usr/bin/env python3
#
# certproxy/errors.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Exception taxonomy shared by the store, services and API layer.

Each error carries the HTTP status it maps to, so routers can simply let it
propagate and the exception handler in ``main.py`` renders the response.
"""

from __future__ import annotations


class CertProxyError(Exception):
	"""Base class for errors that are safe to show to API callers."""
	status_code = 500
	error_type = "internal_error"

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message


class ValidationError(CertProxyError):
	"""Bad input or a violated precondition (e.g. duplicate pending request)."""
	status_code = 400
	error_type = "validation_error"


class NotFoundError(CertProxyError):
	status_code = 404
	error_type = "not_found"


class ConflictError(CertProxyError):
	"""A uniqueness or lifecycle invariant would be broken."""
	status_code = 409
	error_type = "conflict"


class ExternalServiceError(CertProxyError):
	"""certbot or nginx failed."""
	status_code = 503
	error_type = "external_service_error"


class DatabaseError(CertProxyError):
	status_code = 500
	error_type = "database_error"
