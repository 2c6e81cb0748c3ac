#!/usr/bin/env python3
#
# certproxy/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any, Iterable


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	warnings: Iterable[str] | None = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a normalized success response.

	``warnings`` is only present when there is something to report, so
	clients can treat its absence as a clean run.
	"""
	payload: dict[str, Any] = {"success": True}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	if warnings:
		payload["warnings"] = list(warnings)
	if extra:
		payload.update(extra)
	return payload


def error_body(message: str, error_type: str, request_id: str, detail: str | None = None) -> dict[str, Any]:
	body: dict[str, Any] = {
		"success": False,
		"error": message,
		"type": error_type,
		"request_id": request_id,
	}
	if detail is not None:
		body["detail"] = detail
	return body
