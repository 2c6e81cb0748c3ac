#!/usr/bin/env python3
#
# certproxy/acme/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME HTTP-01 issuance through certbot."""

from .certbot import CertbotClient, dedupe_domains
from .challenge import AcmeChallengeRoute
from .reachability import probe_domain

__all__ = [
	"AcmeChallengeRoute",
	"CertbotClient",
	"dedupe_domains",
	"probe_domain",
]
