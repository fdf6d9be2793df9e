#!/usr/bin/env python3
#
# hostssl/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization."""

from __future__ import annotations

import logging
import sqlite3

from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the required database schema (idempotent).

	``users``, ``auth_tokens`` and ``hostings`` mirror the rows owned by the
	panel's account layer; only the columns the SSL workflow reads are kept.
	"""
	with transaction(conn):
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS users (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				email TEXT NOT NULL UNIQUE,
				name TEXT,
				is_admin INTEGER NOT NULL DEFAULT 0,
				is_active INTEGER NOT NULL DEFAULT 1,
				created_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS auth_tokens (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id INTEGER NOT NULL,
				token_hash TEXT NOT NULL UNIQUE,
				expires_at timestamp NOT NULL,
				created_at timestamp NOT NULL,
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS hostings (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				user_id INTEGER NOT NULL,
				username TEXT NOT NULL UNIQUE,
				domain TEXT NOT NULL,
				status TEXT NOT NULL DEFAULT 'PENDING',
				is_custom_domain INTEGER NOT NULL DEFAULT 0,
				created_at timestamp NOT NULL,
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_hostings_user_id ON hostings(user_id)")

		# General panel settings (allowed_domains lives here)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS settings (
				key TEXT PRIMARY KEY,
				value TEXT NOT NULL,
				updated_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS ssl_config (
				key TEXT PRIMARY KEY,
				value TEXT NOT NULL,
				description TEXT,
				updated_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS ssl_certificates (
				id TEXT PRIMARY KEY,
				hosting_id INTEGER NOT NULL,
				domain TEXT NOT NULL,
				domain_type TEXT NOT NULL,
				provider TEXT NOT NULL,
				status TEXT NOT NULL,
				verification_token TEXT,
				txt_record TEXT,
				cname_record TEXT,
				dns_record_id TEXT,
				certificate TEXT,
				private_key TEXT,
				ca_certificate TEXT,
				verified_at timestamp,
				issued_at timestamp,
				expires_at timestamp,
				last_error TEXT,
				retry_count INTEGER NOT NULL DEFAULT 0,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL,
				FOREIGN KEY(hosting_id) REFERENCES hostings(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_ssl_certificates_domain ON ssl_certificates(domain)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_ssl_certificates_status ON ssl_certificates(status)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_ssl_certificates_hosting ON ssl_certificates(hosting_id)")

		# Append-only issuance progress, polled by the dashboard
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS ssl_issue_logs (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				certificate_id TEXT NOT NULL,
				message TEXT NOT NULL,
				created_at timestamp NOT NULL,
				FOREIGN KEY(certificate_id) REFERENCES ssl_certificates(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute(
			"CREATE INDEX IF NOT EXISTS idx_ssl_issue_logs_certificate ON ssl_issue_logs(certificate_id, id)"
		)
	_log.debug("Database schema ready")
