#!/usr/bin/env python3
#
# certproxy/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .acme.certbot import CertbotClient
from .acme.reachability import Prober, probe_domain
from .api import auth as auth_api
from .api import proxies as proxies_api
from .api import renewal as renewal_api
from .api import ssl as ssl_api
from .api.response import error_body
from .db.store import CertificateStore
from .errors import CertProxyError, ExternalServiceError
from .nginx.synchronizer import NginxSynchronizer
from .services.certificates import CertificateService
from .services.proxies import ProxyService
from .tasks.maintenance import build_maintenance_scheduler
from .tasks.renewal import RenewalScheduler
from .utils.config import Config, load_config
from .utils.exec import CommandRunner, run_exec
from .utils.rate_limit import limiter
from .utils.request_id import RequestIDMiddleware, get_request_id

_log = logging.getLogger(__name__)

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",    # Cyan
	"INFO": "\033[32m",     # Green
	"WARNING": "\033[33m",  # Yellow
	"ERROR": "\033[31m",    # Red
	"CRITICAL": "\033[35m", # Magenta
}
_RESET = "\033[0m"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ColoredFormatter(logging.Formatter):
	"""Formatter that colors the level name on a TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		color = _LOG_COLORS.get(orig_levelname)
		record.levelname = f"{color}{orig_levelname:<8}{_RESET}" if color else f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def _setup_logging(log_level: str) -> None:
	"""Configure unified logging for the entire application."""
	level = getattr(logging, log_level, logging.INFO)
	if sys.stdout.isatty():
		formatter: logging.Formatter = _ColoredFormatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
	else:
		formatter = logging.Formatter(
			fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
			datefmt=_DATE_FORMAT,
		)

	# force=True drops handlers installed earlier (e.g. by uvicorn)
	logging.basicConfig(level=level, handlers=[logging.StreamHandler(sys.stdout)], force=True)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	for name in ("httpcore", "httpx", "aiosqlite", "watchfiles"):
		logging.getLogger(name).setLevel(logging.WARNING)


async def _restore_nginx_state(app: FastAPI) -> None:
	"""Re-materialize every proxy host from the database and reload nginx.

	Failures are logged; the API still starts so an operator can fix things.
	"""
	store: CertificateStore = app.state.store
	sync: NginxSynchronizer = app.state.sync

	if not await sync.is_installed():
		_log.warning("NGINX binary %r not found, skipping config restore", sync.nginx_bin)
		return

	proxies = await store.list_proxies()
	await sync.regenerate_all(proxies)
	try:
		removed = await sync.cleanup_orphans(p.domain for p in proxies)
	except OSError as exc:
		_log.error("NGINX_CONFIG orphan cleanup failed: %s", exc)
		removed = []
	if removed:
		_log.info("NGINX_CONFIG removed %d orphaned configs", len(removed))
	try:
		await sync.reload()
	except ExternalServiceError as exc:
		_log.error("NGINX_RELOAD startup reload failed: %s", exc)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg: Config = app.state.cfg
	store: CertificateStore = app.state.store

	# ─── BOOTSTRAP ───────────────────────────────────────────
	await store.init_schema()
	generated = await store.ensure_default_admin(cfg.admin_password)
	if generated and not cfg.admin_password:
		# Shown once; never written to the log stream
		print(f"\n  Initial admin password: {generated}\n  Change it after the first login.\n", flush=True)
	abandoned = await store.fail_abandoned_pending()
	if abandoned:
		_log.warning("CERT_STORE marked %d certificates left pending by a previous run as failed", abandoned)

	await _restore_nginx_state(app)
	if not await app.state.certificates.client.is_installed():
		_log.warning("CERTBOT binary %r not usable, certificate requests will fail", cfg.certbot_path)

	# ─── BACKGROUND JOBS ─────────────────────────────────────
	renewal: RenewalScheduler = app.state.renewal
	maintenance = app.state.maintenance
	if cfg.renewal_enabled:
		await renewal.start()
	else:
		_log.warning("RENEWAL automatic renewal disabled (RENEWAL_ENABLED=false)")
	await maintenance.start()
	_log.info("CertProxy startup complete")

	try:
		yield
	finally:
		# ─── SHUTDOWN ────────────────────────────────────────
		await renewal.stop()
		await maintenance.stop_graceful()
		_log.info("CertProxy shutdown complete")


def _install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(CertProxyError)
	async def _certproxy_error(request: Request, exc: CertProxyError) -> JSONResponse:
		request_id = get_request_id(request)
		if exc.status_code >= 500:
			_log.error("REQUEST_FAILED request_id=%s type=%s: %s", request_id, exc.error_type, exc.message)
		return JSONResponse(
			status_code=exc.status_code,
			content=error_body(exc.message, exc.error_type, request_id),
		)

	@app.exception_handler(Exception)
	async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
		request_id = get_request_id(request)
		_log.exception("REQUEST_FAILED request_id=%s unhandled %s", request_id, exc.__class__.__name__)
		detail = str(exc) if app.state.cfg.is_development else None
		return JSONResponse(
			status_code=500,
			content=error_body("Internal server error", "internal_error", request_id, detail),
		)


def create_app(
	cfg: Config | None = None,
	*,
	runner: CommandRunner | None = None,
	prober: Prober | None = None,
) -> FastAPI:
	"""Application factory for CertProxy.

	``runner`` and ``prober`` replace the subprocess runner and the HTTP
	reachability probe (tests, dry runs).
	"""
	if cfg is None:
		cfg = load_config()
		_setup_logging(cfg.log_level)

	app = FastAPI(
		title="CertProxy",
		description="Reverse proxy hosts with automatic Let's Encrypt certificates",
		version="0.1.0",
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	# ─── COMPOSITION ─────────────────────────────────────────
	runner = runner or run_exec
	store = CertificateStore(cfg.db_path)
	sync = NginxSynchronizer(
		cfg.sites_available,
		cfg.sites_enabled,
		cfg.certbot_config_dir,
		cfg.certbot_webroot,
		nginx_bin=cfg.nginx_bin,
		runner=runner,
	)
	client = CertbotClient.from_config(cfg, sync, runner=runner, prober=prober or probe_domain)

	app.state.cfg = cfg
	app.state.store = store
	app.state.sync = sync
	app.state.proxies = ProxyService(store, sync)
	app.state.certificates = CertificateService(
		store, client, sync,
		scheduler_running=lambda: app.state.renewal.is_running,
	)
	app.state.renewal = RenewalScheduler(app.state.certificates, hour_utc=cfg.renewal_hour_utc)
	app.state.maintenance = build_maintenance_scheduler(cfg.db_path)

	# ─── MIDDLEWARE ──────────────────────────────────────────
	app.add_middleware(RequestIDMiddleware)
	app.state.limiter = limiter
	app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
	_install_error_handlers(app)

	# ─── API ROUTES ──────────────────────────────────────────
	app.include_router(auth_api.router, prefix="/api/auth")
	app.include_router(proxies_api.router, prefix="/api/proxies")
	app.include_router(ssl_api.router, prefix="/api/ssl")
	app.include_router(renewal_api.router, prefix="/api/renewal")

	@app.get("/health", tags=["health"])
	async def health():
		return {"status": "ok", "renewal_scheduler": app.state.renewal.is_running}

	return app
