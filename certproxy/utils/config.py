#!/usr/bin/env python3
#
# certproxy/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Configuration loading and app-level defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Fixed constants
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parents[2]

RENEWAL_THRESHOLD_DAYS = 30
CERTIFICATE_LIFETIME_DAYS = 90  # Let's Encrypt default, placeholder only
REACHABILITY_TIMEOUT_SECONDS = 4.0


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	nginx_config_dir: Path
	certbot_config_dir: Path
	certbot_work_dir: Path
	certbot_logs_dir: Path
	certbot_webroot: Path
	nginx_bin: str = "nginx"
	certbot_path: str = "certbot"
	certbot_timeout: float = 300.0
	renewal_hour_utc: int = 2
	renewal_enabled: bool = True
	environment: str = "production"
	log_level: str = "INFO"
	admin_password: str = ""

	@property
	def sites_available(self) -> Path:
		return self.nginx_config_dir / "sites-available"

	@property
	def sites_enabled(self) -> Path:
		return self.nginx_config_dir / "sites-enabled"

	@property
	def is_development(self) -> bool:
		return self.environment == "development"


def _strip_value(raw: str) -> str:
	raw = raw.strip()
	quote = raw[:1]
	if quote in ("'", '"') and raw.find(quote, 1) > 0:
		return raw[1:raw.find(quote, 1)]
	return raw.partition(" #")[0].strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Export ``KEY=VALUE`` lines of ``settings.env`` into ``os.environ``.

	Real environment variables win over the file. Comments, blank lines,
	quoted values and a leading ``export`` are understood.
	"""
	path = dotenv_path or _PROJECT_ROOT / "settings.env"
	if not path.is_file():
		return
	for line in path.read_text(encoding="utf-8").splitlines():
		key, sep, value = line.strip().partition("=")
		key = key.removeprefix("export ").strip()
		if not sep or not key or key.startswith("#"):
			continue
		os.environ.setdefault(key, _strip_value(value))


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
	raw = os.getenv(name, "")
	try:
		return float(raw) if raw.strip() else default
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from exc


def load_config() -> Config:
	"""Load configuration from environment variables (optionally via settings.env)."""
	load_dotenv()
	project_root = _PROJECT_ROOT

	data_dir = Path(os.getenv("CERTPROXY_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = (data_dir / "certproxy.db").resolve()

	try:
		if data_dir.exists() and not data_dir.is_dir():
			raise ConfigValidationError(f"Path exists but is not a directory: {data_dir}")
		data_dir.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ConfigValidationError(f"Cannot create data directory: {exc}") from exc

	allowed_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in allowed_levels:
		log_level = "INFO"

	environment = os.getenv("CERTPROXY_ENV", "production").strip().lower()
	if environment not in ("production", "development"):
		raise ConfigValidationError(
			f"CERTPROXY_ENV must be 'production' or 'development', got {environment!r}"
		)

	renewal_hour = int(_env_float("RENEWAL_HOUR_UTC", 2))
	if not 0 <= renewal_hour <= 23:
		raise ConfigValidationError(f"RENEWAL_HOUR_UTC must be 0-23, got {renewal_hour}")

	certbot_timeout = _env_float("CERTBOT_TIMEOUT", 300.0)
	if certbot_timeout <= 0:
		raise ConfigValidationError("CERTBOT_TIMEOUT must be positive")

	return Config(
		base_dir=project_root,
		data_dir=data_dir,
		db_path=db_path,
		nginx_config_dir=Path(os.getenv("NGINX_CONFIG_DIR", "/etc/nginx")),
		certbot_config_dir=Path(os.getenv("CERTBOT_CONFIG_DIR", "/etc/letsencrypt")),
		certbot_work_dir=Path(os.getenv("CERTBOT_WORK_DIR", "/var/lib/letsencrypt")),
		certbot_logs_dir=Path(os.getenv("CERTBOT_LOGS_DIR", "/var/log/letsencrypt")),
		certbot_webroot=Path(os.getenv("CERTBOT_WEBROOT", "/var/www/certbot")),
		nginx_bin=os.getenv("NGINX_BIN", "nginx"),
		certbot_path=os.getenv("CERTBOT_PATH", "certbot"),
		certbot_timeout=certbot_timeout,
		renewal_hour_utc=renewal_hour,
		renewal_enabled=_env_bool("RENEWAL_ENABLED", True),
		environment=environment,
		log_level=log_level,
		admin_password=os.getenv("CERTPROXY_ADMIN_PASSWORD", ""),
	)

