#!/usr/bin/env python3
#
# tests/conftest.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Shared fixtures: isolated database, fake nginx/certbot, real x509 material."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Sequence

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certproxy.acme.certbot import CertbotClient
from certproxy.db.store import CertificateStore
from certproxy.models.certificates import ReachabilityResult
from certproxy.models.records import IssuanceOutcome
from certproxy.nginx.synchronizer import NginxSynchronizer
from certproxy.services.certificates import CertificateService
from certproxy.services.proxies import ProxyService
from certproxy.utils.config import Config
from certproxy.utils.exec import ExecResult
from certproxy.utils.rate_limit import limiter
from certproxy.utils.time import utcnow

OK = ExecResult(0, "", "")


def write_certificate(
	config_dir: Path,
	primary: str,
	domains: Sequence[str],
	not_after: datetime,
	not_before: datetime | None = None,
) -> Path:
	"""Write a self-signed ``live/<primary>/fullchain.pem`` like certbot would."""
	key = ec.generate_private_key(ec.SECP256R1())
	name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, primary)])
	cert = (
		x509.CertificateBuilder()
		.subject_name(name)
		.issuer_name(name)
		.public_key(key.public_key())
		.serial_number(x509.random_serial_number())
		.not_valid_before(not_before or (utcnow() - timedelta(days=1)))
		.not_valid_after(not_after)
		.add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]), critical=False)
		.sign(key, hashes.SHA256())
	)
	path = config_dir / "live" / primary / "fullchain.pem"
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
	return path


class FakeRunner:
	"""Records every command; answers with the first matching hook or prefix result."""

	def __init__(self) -> None:
		self.calls: list[tuple[str, ...]] = []
		self.results: dict[tuple[str, ...], ExecResult] = {}
		self.hooks: list[Callable[[tuple[str, ...]], ExecResult | None]] = []

	async def __call__(self, *cmd: str, timeout: float = 30.0) -> ExecResult:
		self.calls.append(cmd)
		for hook in self.hooks:
			result = hook(cmd)
			if result is not None:
				return result
		for prefix, result in self.results.items():
			if cmd[: len(prefix)] == prefix:
				return result
		return OK

	def commands(self, program: str) -> list[tuple[str, ...]]:
		return [c for c in self.calls if c[0] == program]


class FakeCertbot:
	"""Behaves like certbot on top of a FakeRunner, writing real certificate files.

	``error`` makes the next invocations exit 1 with that message; ``raises``
	makes them raise instead.
	"""

	def __init__(self, runner: FakeRunner, config_dir: Path, lifetime_days: int = 90) -> None:
		self.config_dir = config_dir
		self.lifetime_days = lifetime_days
		self.error: str | None = None
		self.raises: Exception | None = None
		self.fail_domains: set[str] = set()
		self.explode_domains: set[str] = set()
		self.lineages: dict[str, list[str]] = {}
		runner.hooks.append(self)

	def __call__(self, cmd: tuple[str, ...]) -> ExecResult | None:
		if cmd[0] != "certbot":
			return None
		if self.raises is not None:
			raise self.raises
		if self.error is not None:
			return ExecResult(1, "", f"Saving debug log\n{self.error}")
		verb = cmd[1]
		if verb == "certonly":
			domains = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-d"]
			self._issue(domains[0], domains)
		elif verb == "renew":
			primary = cmd[cmd.index("--cert-name") + 1]
			if primary in self.explode_domains:
				raise RuntimeError(f"certbot crashed renewing {primary}")
			if primary in self.fail_domains:
				return ExecResult(1, "", "Challenge failed for domain " + primary)
			self._issue(primary, self.lineages.get(primary, [primary]))
		elif verb == "revoke":
			cert_path = Path(cmd[cmd.index("--cert-path") + 1])
			cert_path.unlink(missing_ok=True)
		return OK

	def _issue(self, primary: str, domains: list[str]) -> None:
		self.lineages[primary] = domains
		write_certificate(self.config_dir, primary, domains, utcnow() + timedelta(days=self.lifetime_days))


async def fake_prober(domain: str, timeout: float = 4.0) -> ReachabilityResult:
	if domain.startswith("unreachable."):
		return ReachabilityResult(domain=domain, reachable=False, error="timeout")
	return ReachabilityResult(domain=domain, reachable=True, status_code=200)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path: Path) -> Path:
	return tmp_path / "data" / "certproxy.db"


@pytest.fixture
async def store(db_path: Path) -> CertificateStore:
	store = CertificateStore(db_path)
	await store.init_schema()
	return store


@pytest.fixture
async def user_id(store: CertificateStore) -> int:
	return await store.create_user("alice", "correct horse battery staple")


@pytest.fixture
async def proxy(store: CertificateStore, user_id: int):
	return await store.create_proxy(user_id, "example.com", "10.0.0.5", 8080)


@pytest.fixture
def runner() -> FakeRunner:
	return FakeRunner()


@pytest.fixture
def letsencrypt_dir(tmp_path: Path) -> Path:
	return tmp_path / "letsencrypt"


@pytest.fixture
def sync(tmp_path: Path, letsencrypt_dir: Path, runner: FakeRunner) -> NginxSynchronizer:
	return NginxSynchronizer(
		tmp_path / "nginx" / "sites-available",
		tmp_path / "nginx" / "sites-enabled",
		letsencrypt_dir,
		tmp_path / "webroot",
		runner=runner,
	)


@pytest.fixture
def certbot(runner: FakeRunner, letsencrypt_dir: Path) -> FakeCertbot:
	return FakeCertbot(runner, letsencrypt_dir)


@pytest.fixture
def client(tmp_path: Path, sync: NginxSynchronizer, runner: FakeRunner, letsencrypt_dir: Path) -> CertbotClient:
	return CertbotClient(
		sync,
		config_dir=letsencrypt_dir,
		work_dir=tmp_path / "certbot-work",
		logs_dir=tmp_path / "certbot-logs",
		webroot=sync.webroot,
		runner=runner,
		prober=fake_prober,
	)


@pytest.fixture
def service(store: CertificateStore, client: CertbotClient, sync: NginxSynchronizer, certbot: FakeCertbot) -> CertificateService:
	return CertificateService(store, client, sync, scheduler_running=lambda: True)


@pytest.fixture
def proxy_service(store: CertificateStore, sync: NginxSynchronizer) -> ProxyService:
	return ProxyService(store, sync)


@pytest.fixture
def issue_valid(store: CertificateStore):
	"""Create a ``valid`` row expiring in ``days`` without talking to certbot."""

	async def _issue(proxy_id: int, domain: str, days: float, sans: Sequence[str] = ()):
		cert_id = await store.record_issuance_attempt(proxy_id, domain, sans)
		return await store.finalize(
			cert_id,
			IssuanceOutcome(status="valid", expires_at=utcnow() + timedelta(days=days), issued_at=utcnow()),
		)

	return _issue


@pytest.fixture
def app_config(tmp_path: Path) -> Config:
	return Config(
		base_dir=tmp_path,
		data_dir=tmp_path / "data",
		db_path=tmp_path / "data" / "certproxy.db",
		nginx_config_dir=tmp_path / "nginx",
		certbot_config_dir=tmp_path / "letsencrypt",
		certbot_work_dir=tmp_path / "certbot-work",
		certbot_logs_dir=tmp_path / "certbot-logs",
		certbot_webroot=tmp_path / "webroot",
		renewal_enabled=False,
		environment="development",
		admin_password="admin-password",
	)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
	limiter.reset()
	yield
