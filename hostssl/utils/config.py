#!/usr/bin/env python3
#
# hostssl/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Process configuration loading and app-level defaults.

Only settings needed before the database is reachable live here. Everything
an operator edits at runtime (ACME e-mail, Cloudflare token, EAB material)
is stored in the ``ssl_config`` table, see :mod:`hostssl.certs.settings`.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


DEFAULT_ISSUING_TIMEOUT_MINUTES = 15
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300.0


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	log_level: str = "INFO"
	issuing_timeout_minutes: int = DEFAULT_ISSUING_TIMEOUT_MINUTES
	reconcile_interval_seconds: float = DEFAULT_RECONCILE_INTERVAL_SECONDS


def _parse_value(raw: str) -> str:
	"""Extract value, respecting quotes and stripping inline comments."""
	raw = raw.strip()
	if raw and raw[0] in ('"', "'"):
		quote = raw[0]
		end = raw.find(quote, 1)
		if end != -1:
			return raw[1:end]
	if " #" in raw:
		raw = raw.split(" #", 1)[0]
	return raw.strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Load simple KEY=VALUE pairs from settings.env.

	Blank lines, comments and ``export`` prefixes are handled; variables
	that are already set in the environment are never overridden.
	"""
	project_root = Path(__file__).resolve().parents[2]
	dotenv_path = dotenv_path or (project_root / "settings.env")
	if not dotenv_path.exists():
		return
	for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
		line = raw_line.strip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		key, value = line.split("=", 1)
		key = key.strip()
		if key.startswith("export "):
			key = key[7:].strip()
		if not key:
			continue
		os.environ.setdefault(key, _parse_value(value))


def _env_int(name: str, default: int, minimum: int) -> int:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		value = int(raw.strip())
	except ValueError:
		_log.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
		return default
	return max(minimum, value)


def load_config() -> Config:
	"""Load configuration from environment variables (optionally via settings.env)."""
	load_dotenv()
	project_root = Path(__file__).resolve().parents[2]

	data_dir = Path(os.getenv("HOSTSSL_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = Path(os.getenv("HOSTSSL_DB_PATH", str(data_dir / "hostssl.db"))).resolve()

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

	return Config(
		base_dir=project_root,
		data_dir=data_dir,
		db_path=db_path,
		log_level=log_level,
		issuing_timeout_minutes=_env_int(
			"HOSTSSL_ISSUING_TIMEOUT_MINUTES", DEFAULT_ISSUING_TIMEOUT_MINUTES, 1
		),
		reconcile_interval_seconds=float(
			_env_int("HOSTSSL_RECONCILE_INTERVAL_SECONDS", int(DEFAULT_RECONCILE_INTERVAL_SECONDS), 5)
		),
	)


# Global config singleton with thread-safe lazy initialization
_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
	"""Get the global config singleton (thread-safe)."""
	global _config
	if _config is None:
		with _config_lock:
			if _config is None:
				_config = load_config()
	return _config


def reset_config() -> None:
	"""Reset the cached config. Intended for tests only."""
	global _config
	with _config_lock:
		_config = None
