#!/usr/bin/env python3
#
# certproxy/nginx/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""nginx integration: server block rendering and site synchronization."""

from .nginx_config import render, render_acme_challenge
from .synchronizer import NginxSynchronizer

__all__ = [
	"NginxSynchronizer",
	"render",
	"render_acme_challenge",
]
