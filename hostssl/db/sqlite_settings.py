#!/usr/bin/env python3
#
# hostssl/db/sqlite_settings.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Panel settings and SSL configuration key/value helpers."""

from __future__ import annotations

import sqlite3

from ..utils.time import utcnow
from .sqlite_runtime import transaction


# ---------------------------------------------------------------------------
# General settings
# ---------------------------------------------------------------------------

def get_setting(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
	"""Get a setting value by key."""
	row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
	return row["value"] if row else default


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
	"""Set a setting value."""
	now = utcnow()
	with transaction(conn):
		conn.execute(
			"""
			INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
			ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
			""",
			(key, value, now),
		)


# ---------------------------------------------------------------------------
# SSL configuration
# ---------------------------------------------------------------------------

def get_ssl_config(conn: sqlite3.Connection, key: str) -> str | None:
	"""Get an SSL config value; empty strings are treated as unset."""
	row = conn.execute("SELECT value FROM ssl_config WHERE key = ?", (key,)).fetchone()
	if not row or row["value"] == "":
		return None
	return row["value"]


def set_ssl_config(
	conn: sqlite3.Connection,
	key: str,
	value: str,
	description: str | None = None,
) -> None:
	"""Insert or update an SSL config value."""
	now = utcnow()
	with transaction(conn):
		conn.execute(
			"""
			INSERT INTO ssl_config (key, value, description, updated_at) VALUES (?, ?, ?, ?)
			ON CONFLICT(key) DO UPDATE SET
				value = excluded.value,
				description = COALESCE(excluded.description, ssl_config.description),
				updated_at = excluded.updated_at
			""",
			(key, value, description, now),
		)


def get_all_ssl_configs(conn: sqlite3.Connection) -> dict[str, str]:
	"""Return every SSL config value keyed by name."""
	rows = conn.execute("SELECT key, value FROM ssl_config ORDER BY key").fetchall()
	return {row["key"]: row["value"] for row in rows}
