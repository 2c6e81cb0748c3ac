#!/usr/bin/env python3
#
# tests/test_api.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from certproxy.main import create_app

from .conftest import FakeCertbot, FakeRunner, fake_prober


@pytest.fixture
def api(app_config):
	runner = FakeRunner()
	certbot = FakeCertbot(runner, app_config.certbot_config_dir)
	app = create_app(app_config, runner=runner, prober=fake_prober)
	with TestClient(app) as client:
		client.runner = runner
		client.certbot = certbot
		yield client


@pytest.fixture
def auth(api) -> dict[str, str]:
	resp = api.post("/api/auth/login", json={"username": "admin", "password": "admin-password"})
	assert resp.status_code == 200, resp.text
	return {"Authorization": f"Bearer {resp.json()['data']['token']}"}


def _create_proxy(api, auth, domain: str = "app.example.com") -> dict:
	resp = api.post(
		"/api/proxies",
		json={"domain": domain, "target_host": "10.0.0.5", "target_port": 8080},
		headers=auth,
	)
	assert resp.status_code == 201, resp.text
	return resp.json()["data"]


def test_health(api):
	resp = api.get("/health")
	assert resp.status_code == 200
	assert resp.json()["status"] == "ok"


def test_authentication_required(api):
	assert api.get("/api/proxies").status_code == 401
	assert api.get("/api/proxies", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_login_rejects_bad_password(api):
	resp = api.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
	assert resp.status_code == 401


def test_me_and_logout(api, auth):
	me = api.get("/api/auth/me", headers=auth).json()["data"]
	assert me["username"] == "admin"
	assert me["is_admin"] is True

	assert api.post("/api/auth/logout", headers=auth).json()["success"] is True
	assert api.get("/api/auth/me", headers=auth).status_code == 401


def test_proxy_crud(api, auth):
	proxy = _create_proxy(api, auth)
	assert proxy["ssl_enabled"] is False

	listed = api.get("/api/proxies", headers=auth).json()["data"]
	assert [p["domain"] for p in listed] == ["app.example.com"]

	updated = api.put(f"/api/proxies/{proxy['id']}", json={"target_port": 9000}, headers=auth)
	assert updated.json()["data"]["target_port"] == 9000

	dup = api.post(
		"/api/proxies",
		json={"domain": "app.example.com", "target_host": "10.0.0.6", "target_port": 80},
		headers=auth,
	)
	assert dup.status_code == 409
	assert dup.json()["type"] == "conflict"

	assert api.delete(f"/api/proxies/{proxy['id']}", headers=auth).status_code == 200
	assert api.get(f"/api/proxies/{proxy['id']}", headers=auth).status_code == 404


def test_invalid_payload(api, auth):
	resp = api.post(
		"/api/proxies",
		json={"domain": "not a domain", "target_host": "10.0.0.5", "target_port": 8080},
		headers=auth,
	)
	assert resp.status_code == 422


def test_error_envelope_carries_request_id(api, auth):
	resp = api.get("/api/proxies/999", headers={**auth, "X-Request-ID": "trace-42"})
	assert resp.status_code == 404
	assert resp.headers["X-Request-ID"] == "trace-42"
	body = resp.json()
	assert body["success"] is False
	assert body["type"] == "not_found"
	assert body["request_id"] == "trace-42"


def test_certificate_lifecycle(api, auth):
	proxy = _create_proxy(api, auth)

	issued = api.post(f"/api/ssl/request/{proxy['id']}", json={"extra_domains": ["www.app.example.com"]}, headers=auth)
	assert issued.status_code == 200, issued.text
	data = issued.json()["data"]
	assert data["status"] == "valid"
	assert data["extra_domains"] == ["www.app.example.com"]

	status = api.get(f"/api/ssl/status/{proxy['id']}", headers=auth).json()["data"]
	assert status["ssl_status"] == "valid"
	assert status["needs_renewal"] is False

	# a fresh certificate is not due for renewal yet
	renew = api.post(f"/api/ssl/renew/{proxy['id']}", headers=auth)
	assert renew.status_code == 400
	assert renew.json()["type"] == "validation_error"

	certs = api.get("/api/ssl/certificates", headers=auth).json()["data"]
	assert [c["status"] for c in certs] == ["valid"]

	revoked = api.post(f"/api/ssl/revoke/{data['certificate_id']}", headers=auth)
	assert revoked.status_code == 200
	assert api.get(f"/api/proxies/{proxy['id']}", headers=auth).json()["data"]["ssl_enabled"] is False

	again = api.post(f"/api/ssl/revoke/{data['certificate_id']}", headers=auth)
	assert again.status_code == 400

	assert api.delete(f"/api/ssl/certificates/{data['certificate_id']}", headers=auth).status_code == 200


def test_failed_request_is_reported_in_body(api, auth):
	proxy = _create_proxy(api, auth)
	api.certbot.error = "DNS problem: NXDOMAIN looking up A for app.example.com"

	resp = api.post(f"/api/ssl/request/{proxy['id']}", json={}, headers=auth)

	assert resp.status_code == 200
	assert resp.json()["data"]["status"] == "failed"
	assert resp.json()["message"] == "Certificate request failed"


def test_reachability(api, auth):
	resp = api.post(
		"/api/ssl/reachability",
		json={"domains": ["app.example.com", "unreachable.example.com"]},
		headers=auth,
	)
	body = resp.json()
	assert body["all_reachable"] is False
	assert [r["reachable"] for r in body["data"]] == [True, False]


def test_renewal_endpoints(api, auth):
	_create_proxy(api, auth)

	stats = api.get("/api/renewal/stats", headers=auth).json()["data"]
	assert stats["certificates_expiring_soon"] == 0
	assert stats["scheduler_running"] is False

	check = api.post("/api/renewal/check", headers=auth).json()["data"]
	assert check == {"checked": 0, "renewed": 0, "failed": 0, "errors": []}

	logs = api.get("/api/renewal/logs?page=1&limit=10", headers=auth).json()
	assert logs["data"] == []
	assert logs["pagination"]["total"] == 0

	assert api.get("/api/renewal/logs/app.example.com", headers=auth).json()["data"] == []
	assert api.get("/api/renewal/expiring?days=30", headers=auth).json()["data"] == []

	# automatic renewal is disabled in this configuration
	assert api.get("/api/renewal/health", headers=auth).json()["data"]["status"] == "critical"
