#!/usr/bin/env python3
#
# certproxy/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""CertProxy: nginx reverse proxy hosts with automatic Let's Encrypt certificates."""

from .main import create_app

__all__ = ["create_app"]
