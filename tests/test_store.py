#!/usr/bin/env python3
#
# tests/test_store.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from certproxy.errors import ConflictError, NotFoundError, ValidationError
from certproxy.models.records import IssuanceOutcome
from certproxy.utils.time import utcnow


async def test_one_active_certificate_per_proxy(store, proxy):
	await store.record_issuance_attempt(proxy.id, proxy.domain)
	with pytest.raises(ConflictError):
		await store.record_issuance_attempt(proxy.id, proxy.domain)


async def test_concurrent_attempts_only_one_wins(store, proxy):
	results = await asyncio.gather(
		*(store.record_issuance_attempt(proxy.id, proxy.domain) for _ in range(5)),
		return_exceptions=True,
	)
	created = [r for r in results if isinstance(r, int)]
	conflicts = [r for r in results if isinstance(r, ConflictError)]
	assert len(created) == 1
	assert len(conflicts) == 4


async def test_attempt_for_unknown_proxy(store):
	with pytest.raises(NotFoundError):
		await store.record_issuance_attempt(999, "nowhere.example.com")


async def test_finalize_valid_stores_expiry_and_enables_ssl(store, proxy):
	cert_id = await store.record_issuance_attempt(proxy.id, proxy.domain, ["www.example.com"])
	expires = utcnow() + timedelta(days=90)

	cert = await store.finalize(cert_id, IssuanceOutcome(status="valid", expires_at=expires, issued_at=utcnow()))

	assert cert.status == "valid"
	assert abs((cert.expires_at - expires).total_seconds()) < 1
	assert cert.extra_domains == ("www.example.com",)
	assert (await store.get_proxy(proxy.id)).ssl_enabled is True


async def test_finalize_failed_keeps_ssl_disabled(store, proxy):
	cert_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	cert = await store.finalize(cert_id, IssuanceOutcome(status="failed", error="rate limited"))
	assert cert.status == "failed"
	assert (await store.get_proxy(proxy.id)).ssl_enabled is False
	# a failed row does not block a new attempt
	await store.record_issuance_attempt(proxy.id, proxy.domain)


async def test_terminal_rows_cannot_be_finalized_again(store, proxy):
	cert_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	await store.finalize(cert_id, IssuanceOutcome(status="failed", error="boom"))
	with pytest.raises(ConflictError):
		await store.finalize(cert_id, IssuanceOutcome(status="valid", expires_at=utcnow() + timedelta(days=90)))


async def test_valid_outcome_requires_expiry():
	with pytest.raises(ValueError):
		IssuanceOutcome(status="valid")


async def test_supersede_frees_the_slot(store, proxy, issue_valid):
	old = await issue_valid(proxy.id, proxy.domain, 10)
	assert await store.supersede(proxy.id) == old.id
	assert (await store.get(old.id)).status == "expired"
	new_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	assert (await store.current_for_proxy(proxy.id)).id == new_id
	assert await store.supersede(999) is None


async def test_revoke_only_valid(store, proxy, issue_valid):
	pending_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	with pytest.raises(ValidationError):
		await store.revoke(pending_id)
	await store.finalize(pending_id, IssuanceOutcome(status="failed", error="x"))

	cert = await issue_valid(proxy.id, proxy.domain, 60)
	revoked = await store.revoke(cert.id)
	assert revoked.status == "revoked"
	assert (await store.get_proxy(proxy.id)).ssl_enabled is False
	with pytest.raises(NotFoundError):
		await store.revoke(12345)


async def test_domains_primary_first_without_duplicates(store, proxy):
	cert_id = await store.record_issuance_attempt(
		proxy.id, proxy.domain, ["www.example.com", "example.com", "api.example.com", "www.example.com"],
	)
	assert await store.get_domains(cert_id) == ["example.com", "www.example.com", "api.example.com"]
	with pytest.raises(NotFoundError):
		await store.get_domains(424242)


async def test_find_expiring_soon(store, user_id, issue_valid):
	soon = await store.create_proxy(user_id, "soon.example.com", "10.0.0.1", 80)
	sooner = await store.create_proxy(user_id, "sooner.example.com", "10.0.0.2", 80)
	later = await store.create_proxy(user_id, "later.example.com", "10.0.0.3", 80)
	past = await store.create_proxy(user_id, "past.example.com", "10.0.0.4", 80)

	await issue_valid(soon.id, soon.domain, 20)
	await issue_valid(sooner.id, sooner.domain, 3)
	await issue_valid(later.id, later.domain, 60)
	await issue_valid(past.id, past.domain, -1)

	expiring = await store.find_expiring_soon(30)
	assert [c.domain for c in expiring] == ["sooner.example.com", "soon.example.com"]
	assert [c.domain for c in await store.find_expired_valid()] == ["past.example.com"]

	assert await store.mark_passively_expired() == 1
	assert await store.find_expired_valid() == []


async def test_ownership_scoping(store, proxy, issue_valid):
	other = await store.create_user("bob", "another password")
	cert = await issue_valid(proxy.id, proxy.domain, 40)
	assert await store.get(cert.id, user_id=other) is None
	assert await store.get_proxy(proxy.id, user_id=other) is None
	assert (await store.get(cert.id, user_id=proxy.user_id)).id == cert.id
	assert await store.list_for_user(other) == []


async def test_deleting_proxy_cascades(store, proxy, issue_valid):
	cert = await issue_valid(proxy.id, proxy.domain, 40)
	assert await store.delete_proxy(proxy.id) is True
	assert await store.get(cert.id) is None
	assert await store.delete_proxy(proxy.id) is False


async def test_deleting_valid_certificate_disables_ssl(store, proxy, issue_valid):
	cert = await issue_valid(proxy.id, proxy.domain, 40)
	assert await store.delete(cert.id) is True
	assert (await store.get_proxy(proxy.id)).ssl_enabled is False
	assert await store.delete(cert.id) is False


async def test_duplicate_proxy_domain(store, user_id, proxy):
	with pytest.raises(ConflictError):
		await store.create_proxy(user_id, proxy.domain, "10.0.0.9", 9000)


async def test_renewal_log(store):
	await store.append_renewal_log("a.example.com", "success")
	await store.append_renewal_log("a.example.com", "failed", "x" * 5000)
	await store.append_renewal_log("b.example.com", "error", "boom")

	entries, total = await store.list_renewal_logs(page=1, limit=2)
	assert total == 3
	assert [e.domain for e in entries] == ["b.example.com", "a.example.com"]

	for_a = await store.list_renewal_logs_for_domain("a.example.com")
	assert [e.status for e in for_a] == ["failed", "success"]
	assert len(for_a[0].error_message) == 1000

	counts = await store.count_renewals_by_status(utcnow() - timedelta(hours=1))
	assert counts == {"success": 1, "failed": 1, "error": 1}


async def test_default_admin_created_once(store):
	password = await store.ensure_default_admin("")
	assert password
	assert await store.ensure_default_admin("") is None
	admin = await store.get_user_by_username("admin")
	assert admin.is_admin is True


async def test_fail_abandoned_pending(store, user_id, proxy, issue_valid):
	pending_id = await store.record_issuance_attempt(proxy.id, proxy.domain)
	other = await store.create_proxy(user_id, "other.example.com", "10.0.0.6", 80)
	valid = await issue_valid(other.id, other.domain, 40)

	assert await store.fail_abandoned_pending() == 1
	assert (await store.get(pending_id)).status == "failed"
	assert (await store.get(valid.id)).status == "valid"
	assert await store.fail_abandoned_pending() == 0
