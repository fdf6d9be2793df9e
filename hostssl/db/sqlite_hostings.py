#!/usr/bin/env python3
#
# hostssl/db/sqlite_hostings.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Users, auth tokens and hosting accounts as seen by the SSL workflow."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from ..utils.crypto import hash_token
from ..utils.time import utcnow
from .sqlite_runtime import transaction

HOSTING_ACTIVE = "ACTIVE"


# ---------------------------------------------------------------------------
# Users and tokens
# ---------------------------------------------------------------------------

def create_user(
	conn: sqlite3.Connection,
	email: str,
	*,
	name: str | None = None,
	is_admin: bool = False,
) -> int:
	"""Create a user and return its id."""
	with transaction(conn):
		cur = conn.execute(
			"INSERT INTO users (email, name, is_admin, is_active, created_at) VALUES (?, ?, ?, 1, ?)",
			(email.strip().lower(), name, 1 if is_admin else 0, utcnow()),
		)
	return int(cur.lastrowid)


def create_auth_token(
	conn: sqlite3.Connection,
	user_id: int,
	token: str,
	expires_at: datetime,
) -> None:
	"""Store a bearer token (hashed) for a user."""
	with transaction(conn):
		conn.execute(
			"INSERT INTO auth_tokens (user_id, token_hash, expires_at, created_at) VALUES (?, ?, ?, ?)",
			(user_id, hash_token(token), expires_at, utcnow()),
		)


def get_user_by_token(conn: sqlite3.Connection, token: str) -> Optional[sqlite3.Row]:
	"""Resolve a bearer token to an active user, or None if unknown/expired."""
	return conn.execute(
		"""
		SELECT u.* FROM auth_tokens t
		JOIN users u ON u.id = t.user_id
		WHERE t.token_hash = ? AND t.expires_at > ? AND u.is_active = 1
		""",
		(hash_token(token), utcnow()),
	).fetchone()


# ---------------------------------------------------------------------------
# Hostings
# ---------------------------------------------------------------------------

def create_hosting(
	conn: sqlite3.Connection,
	user_id: int,
	username: str,
	domain: str,
	*,
	status: str = HOSTING_ACTIVE,
	is_custom_domain: bool = False,
) -> int:
	"""Create a hosting account row and return its id."""
	with transaction(conn):
		cur = conn.execute(
			"""
			INSERT INTO hostings (user_id, username, domain, status, is_custom_domain, created_at)
			VALUES (?, ?, ?, ?, ?, ?)
			""",
			(user_id, username, domain.lower(), status, 1 if is_custom_domain else 0, utcnow()),
		)
	return int(cur.lastrowid)


def find_hosting_for_subdomain(
	conn: sqlite3.Connection,
	user_id: int,
	domain: str,
	prefix: str,
) -> Optional[sqlite3.Row]:
	"""Find the user's hosting that owns a service subdomain.

	Tried in order: exact domain match, a hosting domain starting with
	``<prefix>.``, then a hosting username containing the prefix.
	"""
	domain = domain.lower()
	row = conn.execute(
		"SELECT * FROM hostings WHERE user_id = ? AND domain = ? ORDER BY id LIMIT 1",
		(user_id, domain),
	).fetchone()
	if row or not prefix:
		return row

	row = conn.execute(
		"SELECT * FROM hostings WHERE user_id = ? AND domain LIKE ? ESCAPE '\\' ORDER BY id LIMIT 1",
		(user_id, _like_escape(prefix.lower()) + ".%"),
	).fetchone()
	if row:
		return row

	return conn.execute(
		"SELECT * FROM hostings WHERE user_id = ? AND username LIKE ? ESCAPE '\\' ORDER BY id LIMIT 1",
		(user_id, "%" + _like_escape(prefix.lower()) + "%"),
	).fetchone()


def find_hosting_for_custom_domain(
	conn: sqlite3.Connection,
	user_id: int,
	domain: str,
) -> Optional[sqlite3.Row]:
	"""Find the hosting to attach a custom-domain certificate to.

	Prefers an active custom-domain hosting for exactly this domain, then the
	user's newest active hosting.
	"""
	row = conn.execute(
		"""
		SELECT * FROM hostings
		WHERE user_id = ? AND domain = ? AND is_custom_domain = 1 AND status = ?
		ORDER BY id LIMIT 1
		""",
		(user_id, domain.lower(), HOSTING_ACTIVE),
	).fetchone()
	if row:
		return row
	return conn.execute(
		"SELECT * FROM hostings WHERE user_id = ? AND status = ? ORDER BY created_at DESC, id DESC LIMIT 1",
		(user_id, HOSTING_ACTIVE),
	).fetchone()


def _like_escape(value: str) -> str:
	return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
