#!/usr/bin/env python3
#
# certproxy/nginx/nginx_config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""nginx server block rendering.

Rendering is a pure function of its arguments: the same proxy always yields
byte-identical text, so re-rendering an unchanged host is a no-op on disk.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Sequence
from pathlib import Path

from ..models.records import ProxyHost

ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/"

_SSL_CIPHERS = (
	"ECDHE-RSA-AES128-GCM-SHA256:ECDHE-RSA-AES256-GCM-SHA384:"
	"ECDHE-RSA-AES128-SHA256:ECDHE-RSA-AES256-SHA384"
)

# Anything that could terminate a directive or open a block
_UNSAFE_RE = re.compile(r"[\s;{}'\"\\$#]")


def _directive_value(value: str, what: str) -> str:
	if not value or _UNSAFE_RE.search(value):
		raise ValueError(f"Unsafe {what} for nginx config: {value!r}")
	return value


def _upstream(host: str, port: int) -> str:
	try:
		if ipaddress.ip_address(host).version == 6:
			host = f"[{host}]"
	except ValueError:
		_directive_value(host, "target host")
	if not 1 <= int(port) <= 65535:
		raise ValueError(f"Invalid target port: {port!r}")
	return f"http://{host}:{int(port)}"


def config_filename(domain: str) -> str:
	return f"{_directive_value(domain, 'domain')}.conf"


def acme_config_filename(primary_domain: str) -> str:
	return f"{_directive_value(primary_domain, 'domain')}-acme.conf"


def _acme_location(webroot: Path) -> list[str]:
	return [
		"    # ACME HTTP-01 challenges (certbot webroot renewals)",
		f"    location {ACME_CHALLENGE_PATH} {{",
		f"        root {_directive_value(str(webroot), 'webroot')};",
		"        try_files $uri =404;",
		"    }",
		"",
	]


def render(proxy: ProxyHost, letsencrypt_dir: Path, webroot: Path) -> str:
	"""Render the server block(s) for one proxy host.

	With ``ssl_enabled`` port 80 redirects to a TLS server using the
	certificate under ``<letsencrypt_dir>/live/<domain>/``; otherwise a
	plain HTTP server is emitted. Both variants keep answering HTTP-01
	challenges from ``webroot`` on port 80.
	"""
	domain = _directive_value(proxy.domain, "domain")
	upstream = _upstream(proxy.target_host, proxy.target_port)
	live_dir = letsencrypt_dir / "live" / domain

	lines = [
		f"# Proxy configuration for {domain}",
		"# Generated automatically - do not edit manually",
		"",
	]

	if proxy.ssl_enabled:
		lines += [
			"server {",
			"    listen 80;",
			f"    server_name {domain};",
			"",
			*_acme_location(webroot),
			"    location / {",
			"        return 301 https://$server_name$request_uri;",
			"    }",
			"}",
			"",
			"server {",
			"    listen 443 ssl;",
			"    http2 on;",
			f"    server_name {domain};",
			"",
			"    # SSL Configuration",
			f"    ssl_certificate {live_dir / 'fullchain.pem'};",
			f"    ssl_certificate_key {live_dir / 'privkey.pem'};",
			"    ssl_protocols TLSv1.2 TLSv1.3;",
			f"    ssl_ciphers {_SSL_CIPHERS};",
			"    ssl_prefer_server_ciphers off;",
			"    ssl_session_cache shared:SSL:10m;",
			"    ssl_session_timeout 10m;",
			"",
			"    # Security headers",
			'    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;',
			"    add_header X-Frame-Options DENY always;",
			"    add_header X-Content-Type-Options nosniff always;",
			'    add_header X-XSS-Protection "1; mode=block" always;',
			"",
		]
	else:
		lines += [
			"server {",
			"    listen 80;",
			f"    server_name {domain};",
			"",
			*_acme_location(webroot),
		]

	lines += [
		"    # Proxy configuration",
		"    location / {",
		f"        proxy_pass {upstream};",
		"        proxy_set_header Host $host;",
		"        proxy_set_header X-Real-IP $remote_addr;",
		"        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
		"        proxy_set_header X-Forwarded-Proto $scheme;",
		"        proxy_set_header X-Forwarded-Host $host;",
		"        proxy_set_header X-Forwarded-Port $server_port;",
		"",
		"        # Proxy timeouts",
		"        proxy_connect_timeout 60s;",
		"        proxy_send_timeout 60s;",
		"        proxy_read_timeout 60s;",
		"",
		"        # Buffer settings",
		"        proxy_buffering on;",
		"        proxy_buffer_size 128k;",
		"        proxy_buffers 4 256k;",
		"        proxy_busy_buffers_size 256k;",
		"",
		"        # WebSocket support",
		"        proxy_http_version 1.1;",
		"        proxy_set_header Upgrade $http_upgrade;",
		'        proxy_set_header Connection "upgrade";',
		"    }",
		"",
		"    # Health check endpoint",
		"    location /nginx-health {",
		"        access_log off;",
		'        return 200 "healthy\\n";',
		"        add_header Content-Type text/plain;",
		"    }",
		"}",
	]
	return "\n".join(lines) + "\n"


def render_acme_challenge(domains: Sequence[str], webroot: Path) -> str:
	"""Temporary port-80 server answering HTTP-01 challenges for ``domains``."""
	if not domains:
		raise ValueError("At least one domain is required")
	names = " ".join(_directive_value(d, "domain") for d in domains)
	lines = [
		f"# Temporary ACME challenge configuration for {domains[0]}",
		"# Generated automatically - removed after validation",
		"",
		"server {",
		"    listen 80;",
		f"    server_name {names};",
		"",
		*_acme_location(webroot),
		"    location / {",
		"        return 301 https://$host$request_uri;",
		"    }",
		"}",
	]
	return "\n".join(lines) + "\n"
