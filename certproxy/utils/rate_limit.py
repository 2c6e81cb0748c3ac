#!/usr/bin/env python3
#
# certproxy/utils/rate_limit.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Rate limiting configuration using slowapi."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

RATE_LIMIT_AUTH = "5/minute"       # Login attempts
RATE_LIMIT_ACME = "10/minute"      # Calls that reach the CA or probe remote hosts

limiter = Limiter(key_func=get_remote_address)

__all__ = [
	"RATE_LIMIT_ACME",
	"RATE_LIMIT_AUTH",
	"limiter",
]
