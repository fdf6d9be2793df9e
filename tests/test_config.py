#!/usr/bin/env python3
#
# tests/test_config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

import os

import pytest

from hostssl.utils.config import (
	DEFAULT_ISSUING_TIMEOUT_MINUTES,
	Config,
	get_config,
	load_dotenv,
	reset_config,
)

ENV_KEYS = (
	"HOSTSSL_DATA_DIR",
	"HOSTSSL_DB_PATH",
	"HOSTSSL_ISSUING_TIMEOUT_MINUTES",
	"HOSTSSL_RECONCILE_INTERVAL_SECONDS",
	"LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_config(monkeypatch):
	for key in ENV_KEYS:
		monkeypatch.delenv(key, raising=False)
	reset_config()
	yield
	reset_config()


def test_get_config_reads_environment(tmp_path, monkeypatch):
	monkeypatch.setenv("HOSTSSL_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("HOSTSSL_ISSUING_TIMEOUT_MINUTES", "30")
	monkeypatch.setenv("HOSTSSL_RECONCILE_INTERVAL_SECONDS", "1")
	monkeypatch.setenv("LOG_LEVEL", "debug")

	cfg = get_config()

	assert isinstance(cfg, Config)
	assert cfg.data_dir == (tmp_path / "data").resolve()
	assert cfg.data_dir.is_dir()
	assert cfg.db_path == cfg.data_dir / "hostssl.db"
	assert cfg.issuing_timeout_minutes == 30
	# Clamped to the minimum interval
	assert cfg.reconcile_interval_seconds == 5.0
	assert cfg.log_level == "DEBUG"


def test_get_config_is_cached_until_reset(tmp_path, monkeypatch):
	monkeypatch.setenv("HOSTSSL_DATA_DIR", str(tmp_path / "first"))
	first = get_config()

	monkeypatch.setenv("HOSTSSL_DATA_DIR", str(tmp_path / "second"))
	assert get_config() is first

	reset_config()
	assert get_config().data_dir == (tmp_path / "second").resolve()


def test_invalid_values_fall_back_to_defaults(tmp_path, monkeypatch):
	monkeypatch.setenv("HOSTSSL_DATA_DIR", str(tmp_path))
	monkeypatch.setenv("HOSTSSL_ISSUING_TIMEOUT_MINUTES", "soon")
	monkeypatch.setenv("LOG_LEVEL", "chatty")

	cfg = get_config()

	assert cfg.issuing_timeout_minutes == DEFAULT_ISSUING_TIMEOUT_MINUTES
	assert cfg.log_level == "INFO"


def test_load_dotenv_does_not_override(tmp_path, monkeypatch):
	monkeypatch.setenv("HOSTSSL_DB_PATH", "/already/set.db")
	# Registered so the value load_dotenv writes is undone afterwards
	monkeypatch.setenv("LOG_LEVEL", "")
	monkeypatch.delenv("LOG_LEVEL")
	env_file = tmp_path / "settings.env"
	env_file.write_text(
		"# comment\n"
		"export LOG_LEVEL='warning' # inline\n"
		"HOSTSSL_DB_PATH=/from/file.db\n",
		encoding="utf-8",
	)

	load_dotenv(env_file)

	assert os.environ["LOG_LEVEL"] == "warning"
	assert os.environ["HOSTSSL_DB_PATH"] == "/already/set.db"
