#!/usr/bin/env python3
#
# tests/test_certificate_service.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from certproxy.errors import ConflictError, NotFoundError, ValidationError
from certproxy.models.records import IssuanceOutcome
from certproxy.services.certificates import CertificateService
from certproxy.utils.exec import ExecResult
from certproxy.utils.time import utcnow


def _site(sync, domain: str) -> str:
	return (sync.sites_available / f"{domain}.conf").read_text()


def _stall(monkeypatch, client, method: str) -> asyncio.Event:
	"""Make ``client.<method>`` block until cancelled; the event fires once it runs."""
	started = asyncio.Event()

	async def stalled(*args, **kwargs):
		started.set()
		await asyncio.sleep(3600)

	monkeypatch.setattr(client, method, stalled)
	return started


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------

async def test_request_issues_and_switches_to_tls(service, store, sync, proxy):
	result = await service.request_certificate(proxy.id, ["www.example.com"], "ops@example.com")

	assert result.status == "valid"
	assert result.extra_domains == ["www.example.com"]
	assert result.warnings == []

	cert = await store.get(result.certificate_id)
	assert cert.status == "valid"
	assert cert.expires_at > utcnow() + timedelta(days=89)
	assert (await store.get_proxy(proxy.id)).ssl_enabled is True
	assert "listen 443 ssl;" in _site(sync, "example.com")
	assert (sync.sites_enabled / "example.com.conf").is_symlink()


async def test_request_failure_is_recorded_not_raised(service, store, certbot, proxy):
	certbot.error = "Timeout during connect (likely firewall problem)"

	result = await service.request_certificate(proxy.id)

	assert result.status == "failed"
	assert (await store.get(result.certificate_id)).status == "failed"
	assert (await store.get_proxy(proxy.id)).ssl_enabled is False

	# a failed attempt does not block the next one
	certbot.error = None
	assert (await service.request_certificate(proxy.id)).status == "valid"


async def test_cancelled_request_is_marked_failed(service, store, client, proxy, monkeypatch):
	started = _stall(monkeypatch, client, "obtain")
	task = asyncio.create_task(service.request_certificate(proxy.id))
	await started.wait()
	task.cancel()
	with pytest.raises(asyncio.CancelledError):
		await task

	current = await store.current_for_proxy(proxy.id)
	assert current.status == "failed"

	monkeypatch.undo()
	assert (await service.request_certificate(proxy.id)).status == "valid"


async def test_request_rejected_while_pending(service, store, proxy):
	await store.record_issuance_attempt(proxy.id, proxy.domain)
	with pytest.raises(ValidationError, match="already pending"):
		await service.request_certificate(proxy.id)


async def test_request_rejected_while_valid_for_long(service, store, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 60)
	with pytest.raises(ValidationError, match="only allowed within 30 days"):
		await service.request_certificate(proxy.id, ["www.example.com"])
	assert len(await store.list_for_user(proxy.user_id)) == 1


async def test_request_replaces_expiring_certificate(service, store, proxy, issue_valid):
	old = await issue_valid(proxy.id, proxy.domain, 12)
	result = await service.request_certificate(proxy.id, ["api.example.com"])

	assert result.status == "valid"
	assert (await store.get(old.id)).status == "expired"
	assert (await store.current_for_proxy(proxy.id)).id == result.certificate_id


async def test_request_unknown_or_foreign_proxy(service, store, proxy):
	with pytest.raises(NotFoundError):
		await service.request_certificate(9999)
	other = await store.create_user("mallory", "not alice")
	with pytest.raises(NotFoundError):
		await service.request_certificate(proxy.id, user_id=other)


async def test_nginx_failure_after_issuance_is_a_warning(service, runner, proxy):
	reloads = 0

	def fail_final_reload(cmd):
		# reloads 1 and 2 belong to challenge setup and teardown
		nonlocal reloads
		if cmd == ("nginx", "-s", "reload"):
			reloads += 1
			if reloads == 3:
				return ExecResult(1, "", "nginx: [error] open() \"/run/nginx.pid\" failed")
		return None

	runner.hooks.insert(0, fail_final_reload)
	result = await service.request_certificate(proxy.id)

	assert result.status == "valid"
	assert result.warnings == ['nginx reload failed: nginx: [error] open() "/run/nginx.pid" failed']


# ---------------------------------------------------------------------------
# Renewal gate and lineage
# ---------------------------------------------------------------------------

async def test_renew_not_due_yet(service, store, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 45)
	with pytest.raises(ValidationError):
		await service.renew_certificate(proxy.id)
	assert len(await store.list_for_user(proxy.user_id)) == 1


async def test_renew_expiring_certificate(service, store, certbot, proxy, issue_valid):
	old = await issue_valid(proxy.id, proxy.domain, 10, ["www.example.com"])
	certbot.lineages["example.com"] = ["example.com", "www.example.com"]

	result = await service.renew_certificate(proxy.id)

	assert result.status == "valid"
	assert result.certificate_id != old.id
	assert (await store.get(old.id)).status == "expired"
	new = await store.get(result.certificate_id)
	assert new.status == "valid"
	assert new.extra_domains == ("www.example.com",)
	assert new.expires_at > old.expires_at

	(entry,) = await store.list_renewal_logs_for_domain("example.com")
	assert entry.status == "success"
	assert entry.error_message is None


async def test_renew_failure_is_logged(service, store, certbot, proxy, issue_valid):
	old = await issue_valid(proxy.id, proxy.domain, 5)
	certbot.fail_domains.add("example.com")

	result = await service.renew_certificate(proxy.id)

	assert result.status == "failed"
	assert (await store.get(old.id)).status == "expired"
	(entry,) = await store.list_renewal_logs_for_domain("example.com")
	assert entry.status == "failed"
	assert "Challenge failed" in entry.error_message


async def test_renew_crash_is_logged_as_error(service, store, certbot, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 5)
	certbot.explode_domains.add("example.com")

	result = await service.renew_certificate(proxy.id)

	assert result.status == "failed"
	(entry,) = await store.list_renewal_logs_for_domain("example.com")
	assert entry.status == "error"
	assert "certbot crashed" in entry.error_message


async def test_timed_out_renewal_is_marked_failed(service, store, client, proxy, issue_valid, monkeypatch):
	previous = await issue_valid(proxy.id, proxy.domain, 5)
	_stall(monkeypatch, client, "renew")

	with pytest.raises(asyncio.TimeoutError):
		await asyncio.wait_for(service.renew_certificate(proxy.id), timeout=0.2)

	assert (await store.get(previous.id)).status == "expired"
	current = await store.current_for_proxy(proxy.id)
	assert current.id != previous.id
	assert current.status == "failed"
	(entry,) = await store.list_renewal_logs_for_domain("example.com")
	assert entry.status == "error"
	assert entry.error_message == "Certificate renewal was cancelled"


async def test_renew_without_certificate(service, proxy):
	with pytest.raises(NotFoundError):
		await service.renew_certificate(proxy.id)


async def test_renew_while_pending(service, store, proxy):
	await store.record_issuance_attempt(proxy.id, proxy.domain)
	with pytest.raises(ValidationError):
		await service.renew_certificate(proxy.id)


async def test_lineage_never_has_two_active_rows(service, store, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 10)
	await service.renew_certificate(proxy.id)
	rows = await store.list_for_user(proxy.user_id)
	assert [r.status for r in rows].count("valid") == 1
	with pytest.raises(ConflictError):
		await store.record_issuance_attempt(proxy.id, proxy.domain)


# ---------------------------------------------------------------------------
# Revoke / delete
# ---------------------------------------------------------------------------

async def test_revoke_pending_rejected(service, store, proxy):
	cert_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	with pytest.raises(ValidationError, match="Only valid"):
		await service.revoke_certificate(cert_id)


async def test_revoke_valid_falls_back_to_http(service, store, sync, runner, proxy):
	issued = await service.request_certificate(proxy.id)

	warnings = await service.revoke_certificate(issued.certificate_id)

	assert warnings == []
	assert (await store.get(issued.certificate_id)).status == "revoked"
	assert (await store.get_proxy(proxy.id)).ssl_enabled is False
	assert "listen 443" not in _site(sync, "example.com")
	(revoke_cmd,) = [c for c in runner.commands("certbot") if c[1] == "revoke"]
	assert "--delete-after-revoke" in revoke_cmd


async def test_revoke_unknown(service):
	with pytest.raises(NotFoundError):
		await service.revoke_certificate(404)


async def test_delete_valid_certificate_when_revoke_fails(service, store, certbot, sync, proxy):
	issued = await service.request_certificate(proxy.id)
	certbot.error = "unauthorized"

	warnings = await service.delete_certificate(issued.certificate_id)

	assert warnings and "could not be revoked" in warnings[0]
	assert await store.get(issued.certificate_id) is None
	assert (await store.get_proxy(proxy.id)).ssl_enabled is False
	assert "listen 443" not in _site(sync, "example.com")


async def test_delete_failed_certificate(service, store, proxy):
	cert_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	await store.finalize(cert_id, IssuanceOutcome(status="failed", error="x"))
	assert await service.delete_certificate(cert_id) == []
	with pytest.raises(NotFoundError):
		await service.delete_certificate(cert_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def test_status_without_certificate(service, proxy):
	report = await service.get_status(proxy.id)
	assert report.ssl_status == "none"
	assert report.certificate is None
	assert report.days_until_expiry is None


async def test_status_of_expiring_certificate(service, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 9.5)
	report = await service.get_status(proxy.id)
	assert report.ssl_status == "valid"
	assert report.days_until_expiry == 10
	assert report.needs_renewal is True
	assert report.is_expired is False


async def test_status_of_fresh_certificate(service, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 80)
	report = await service.get_status(proxy.id)
	assert report.needs_renewal is False
	assert report.certificate.days_until_expiry == 80


async def test_list_expiring_soon_clamps_horizon(service, store, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 200)
	assert await service.list_expiring_soon(0) == []
	assert len(await service.list_expiring_soon(10_000)) == 1


async def test_check_reachability_keeps_order(service):
	results = await service.check_reachability(["a.example.com", "unreachable.example.com", "b.example.com"])
	assert [r.domain for r in results] == ["a.example.com", "unreachable.example.com", "b.example.com"]
	assert [r.reachable for r in results] == [True, False, True]


async def test_renewal_health(store, client, sync, proxy, issue_valid):
	running = CertificateService(store, client, sync, scheduler_running=lambda: True)
	stopped = CertificateService(store, client, sync, scheduler_running=lambda: False)

	assert (await running.get_renewal_health()).status == "healthy"
	assert (await stopped.get_renewal_health()).status == "critical"

	await issue_valid(proxy.id, proxy.domain, 3)
	health = await running.get_renewal_health()
	assert health.status == "warning"
	assert health.critical_expiring == 1
	assert health.certificates_expiring_30d == 1


async def test_renewal_stats(service, store, proxy, issue_valid):
	await issue_valid(proxy.id, proxy.domain, 20)
	await store.append_renewal_log("example.com", "success")
	stats = await service.get_renewal_stats()
	assert stats.certificates_expiring_soon == 1
	assert stats.recent_renewals_by_status == {"success": 1}
	assert stats.scheduler_running is True
