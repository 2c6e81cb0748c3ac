#!/usr/bin/env python3
#
# main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

# CertProxy - nginx reverse proxy with automatic certificates
# Local development entry point
#

import os
import sys

import uvicorn
from certproxy.utils.config import ConfigValidationError, load_config

_FMT = {
	"format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
	"datefmt": "%Y-%m-%d %H:%M:%S",
}


def _uvicorn_log_config(level: str) -> dict:
	"""dictConfig for uvicorn in the app's log format; access log on stdout."""
	def handler(stream: str) -> dict:
		return {"formatter": "plain", "class": "logging.StreamHandler", "stream": stream}

	return {
		"version": 1,
		"disable_existing_loggers": False,
		"formatters": {"plain": dict(_FMT)},
		"handlers": {
			"server": handler("ext://sys.stderr"),
			"access": handler("ext://sys.stdout"),
		},
		"loggers": {
			"uvicorn": {"handlers": ["server"], "level": level, "propagate": False},
			"uvicorn.error": {"level": level},
			"uvicorn.access": {"handlers": ["access"], "level": level, "propagate": False},
		},
	}


def _port_from_env() -> int:
	raw = os.environ.get("CERTPROXY_PORT", "8000")
	try:
		port = int(raw)
	except ValueError:
		port = 0
	if not 1 <= port <= 65535:
		sys.exit(f"CERTPROXY_PORT must be 1-65535, got {raw!r}")
	return port


if __name__ == "__main__":
	try:
		cfg = load_config()
	except ConfigValidationError as exc:
		sys.exit(f"Configuration error: {exc}")

	# One worker only: renewal sweeps and nginx reloads are serialized in-process
	uvicorn.run(
		"certproxy:create_app",
		factory=True,
		host=os.environ.get("CERTPROXY_HOST", "127.0.0.1"),
		port=_port_from_env(),
		reload=os.environ.get("CERTPROXY_DEV_RELOAD", "").lower() in ("1", "true", "yes"),
		log_config=_uvicorn_log_config(cfg.log_level.upper()),
	)
