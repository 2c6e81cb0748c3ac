#!/usr/bin/env python3
#
# certproxy/utils/request_id.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Request ID middleware used as the correlation id in error logs."""

from __future__ import annotations

import re
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in log lines, keep them boring
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def get_request_id(request: Request) -> str:
	"""Return the request's correlation id (generated if middleware did not run)."""
	request_id = getattr(request.state, "request_id", None)
	if request_id is None:
		request_id = uuid.uuid4().hex
		request.state.request_id = request_id
	return request_id


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Attach a unique request ID to each request and echo it in the response."""

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		incoming = request.headers.get(REQUEST_ID_HEADER, "")
		request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
		request.state.request_id = request_id

		response = await call_next(request)
		response.headers[REQUEST_ID_HEADER] = request_id
		return response
