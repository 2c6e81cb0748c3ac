#!/usr/bin/env python3
#
# tests/test_config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import os

import pytest

from certproxy.utils.config import ConfigValidationError, load_config, load_dotenv


@pytest.fixture
def env(monkeypatch, tmp_path):
	for name in ("CERTPROXY_ENV", "RENEWAL_HOUR_UTC", "RENEWAL_ENABLED", "CERTBOT_TIMEOUT", "LOG_LEVEL"):
		monkeypatch.delenv(name, raising=False)
	monkeypatch.setenv("CERTPROXY_DATA_DIR", str(tmp_path / "data"))
	return monkeypatch


def test_defaults(env, tmp_path):
	cfg = load_config()
	assert cfg.db_path == (tmp_path / "data" / "certproxy.db").resolve()
	assert cfg.data_dir.is_dir()
	assert cfg.renewal_hour_utc == 2
	assert cfg.renewal_enabled is True
	assert cfg.sites_available.name == "sites-available"
	assert cfg.is_development is False


def test_overrides(env):
	env.setenv("CERTPROXY_ENV", "Development")
	env.setenv("RENEWAL_HOUR_UTC", "4")
	env.setenv("RENEWAL_ENABLED", "off")
	env.setenv("LOG_LEVEL", "verbose")
	cfg = load_config()
	assert cfg.is_development is True
	assert cfg.renewal_hour_utc == 4
	assert cfg.renewal_enabled is False
	assert cfg.log_level == "INFO"


@pytest.mark.parametrize(
	"name, value",
	[
		("CERTPROXY_ENV", "staging"),
		("RENEWAL_HOUR_UTC", "24"),
		("CERTBOT_TIMEOUT", "soon"),
		("CERTBOT_TIMEOUT", "0"),
	],
)
def test_rejects_bad_values(env, name, value):
	env.setenv(name, value)
	with pytest.raises(ConfigValidationError):
		load_config()


def test_data_dir_must_be_a_directory(env, tmp_path):
	(tmp_path / "data").write_text("")
	with pytest.raises(ConfigValidationError):
		load_config()


def test_load_dotenv(monkeypatch, tmp_path):
	monkeypatch.delenv("CP_TEST_PLAIN", raising=False)
	monkeypatch.delenv("CP_TEST_QUOTED", raising=False)
	monkeypatch.delenv("CP_TEST_EXPORTED", raising=False)
	monkeypatch.setenv("CP_TEST_KEEP", "from-env")
	dotenv = tmp_path / "settings.env"
	dotenv.write_text(
		"# comment\n"
		"\n"
		"CP_TEST_PLAIN=value # trailing comment\n"
		"CP_TEST_QUOTED='a # b'\n"
		"export CP_TEST_EXPORTED=yes\n"
		"CP_TEST_KEEP=from-file\n"
		"not a pair\n",
		encoding="utf-8",
	)

	load_dotenv(dotenv)

	assert os.environ["CP_TEST_PLAIN"] == "value"
	assert os.environ["CP_TEST_QUOTED"] == "a # b"
	assert os.environ["CP_TEST_EXPORTED"] == "yes"
	assert os.environ["CP_TEST_KEEP"] == "from-env"
