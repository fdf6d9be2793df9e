#!/usr/bin/env python3
#
# hostssl/db/sqlite_certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SSL certificate rows and their issuance progress log."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime
from typing import Any, Optional

from ..utils.time import utcnow
from .sqlite_runtime import UNSET, transaction

_CERTIFICATE_SELECT = """
	SELECT c.*, h.user_id AS user_id, h.domain AS hosting_domain, h.username AS hosting_username
	FROM ssl_certificates c
	JOIN hostings h ON h.id = c.hosting_id
"""

# Columns update_certificate() may write; PEM material is written only by mark_issued()
_UPDATABLE_COLUMNS = (
	"status",
	"txt_record",
	"cname_record",
	"dns_record_id",
	"verified_at",
	"last_error",
)


def _status_value(status: Any) -> str:
	return getattr(status, "value", status)


def create_certificate(
	conn: sqlite3.Connection,
	*,
	hosting_id: int,
	domain: str,
	domain_type: str,
	provider: str,
	status: str,
	verification_token: str | None = None,
) -> str:
	"""Insert a certificate row and return its id."""
	cert_id = uuid.uuid4().hex
	now = utcnow()
	with transaction(conn):
		conn.execute(
			"""
			INSERT INTO ssl_certificates (
				id, hosting_id, domain, domain_type, provider, status,
				verification_token, created_at, updated_at
			) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
			""",
			(
				cert_id,
				hosting_id,
				domain.lower(),
				_status_value(domain_type),
				_status_value(provider),
				_status_value(status),
				verification_token,
				now,
				now,
			),
		)
	return cert_id


def get_certificate(conn: sqlite3.Connection, cert_id: str) -> Optional[sqlite3.Row]:
	"""Get a certificate joined with its owning hosting (user_id, hosting_domain)."""
	return conn.execute(_CERTIFICATE_SELECT + " WHERE c.id = ?", (cert_id,)).fetchone()


def list_user_certificates(conn: sqlite3.Connection, user_id: int) -> list[sqlite3.Row]:
	"""All certificates attached to any of the user's hostings, newest first."""
	return conn.execute(
		_CERTIFICATE_SELECT + " WHERE h.user_id = ? ORDER BY c.created_at DESC",
		(user_id,),
	).fetchall()


def list_certificates(
	conn: sqlite3.Connection,
	*,
	page: int = 1,
	limit: int = 10,
	status: str | None = None,
	search: str | None = None,
) -> tuple[list[sqlite3.Row], int]:
	"""Paged admin listing with optional status filter and free-text search.

	Search matches the certificate domain, the hosting domain and the owner's
	e-mail address.
	"""
	clauses: list[str] = []
	params: list[Any] = []
	if status:
		clauses.append("c.status = ?")
		params.append(_status_value(status))
	if search:
		like = f"%{search}%"
		clauses.append("(c.domain LIKE ? OR h.domain LIKE ? OR u.email LIKE ?)")
		params.extend([like, like, like])
	where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

	base = """
		FROM ssl_certificates c
		JOIN hostings h ON h.id = c.hosting_id
		JOIN users u ON u.id = h.user_id
	"""
	total = conn.execute(f"SELECT COUNT(*) {base}{where}", params).fetchone()[0]
	rows = conn.execute(
		f"""
		SELECT c.*, h.user_id AS user_id, h.domain AS hosting_domain,
			h.username AS hosting_username, u.email AS user_email, u.name AS user_name
		{base}{where}
		ORDER BY c.created_at DESC
		LIMIT ? OFFSET ?
		""",
		[*params, limit, (page - 1) * limit],
	).fetchall()
	return rows, int(total)


def find_open_certificate(conn: sqlite3.Connection, domain: str) -> Optional[sqlite3.Row]:
	"""Find a certificate for the domain that is not FAILED, EXPIRED or REVOKED."""
	return conn.execute(
		"""
		SELECT * FROM ssl_certificates
		WHERE domain = ? AND status NOT IN ('FAILED', 'EXPIRED', 'REVOKED')
		LIMIT 1
		""",
		(domain.lower(),),
	).fetchone()


def update_certificate(
	conn: sqlite3.Connection,
	cert_id: str,
	*,
	expected_status: Any = None,
	**fields: Any,
) -> bool:
	"""Update selected certificate columns.

	When ``expected_status`` is given the write only applies if the row is
	still in that status; the return value tells whether a row changed. This
	conditional update is the per-certificate guard against two workers
	driving the same transition.
	"""
	assignments: list[str] = []
	params: list[Any] = []
	for column in _UPDATABLE_COLUMNS:
		value = fields.pop(column, UNSET)
		if value is UNSET:
			continue
		assignments.append(f"{column} = ?")
		params.append(_status_value(value) if column == "status" else value)
	if fields:
		raise ValueError(f"Unknown certificate fields: {sorted(fields)}")

	assignments.append("updated_at = ?")
	params.append(utcnow())

	sql = f"UPDATE ssl_certificates SET {', '.join(assignments)} WHERE id = ?"
	params.append(cert_id)
	if expected_status is not None:
		sql += " AND status = ?"
		params.append(_status_value(expected_status))

	with transaction(conn, immediate=True):
		cur = conn.execute(sql, params)
	return cur.rowcount > 0


def mark_issued(
	conn: sqlite3.Connection,
	cert_id: str,
	*,
	certificate: str,
	private_key: str,
	ca_certificate: str,
	issued_at: datetime,
	expires_at: datetime,
) -> bool:
	"""Store issued PEM material and flip ISSUING -> ISSUED in one statement."""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			UPDATE ssl_certificates SET
				status = 'ISSUED',
				certificate = ?,
				private_key = ?,
				ca_certificate = ?,
				issued_at = ?,
				expires_at = ?,
				last_error = NULL,
				updated_at = ?
			WHERE id = ? AND status = 'ISSUING'
			""",
			(certificate, private_key, ca_certificate, issued_at, expires_at, utcnow(), cert_id),
		)
	return cur.rowcount > 0


def mark_failed(conn: sqlite3.Connection, cert_id: str, error: str) -> None:
	"""Move a certificate to FAILED and record the cause."""
	update_certificate(conn, cert_id, status="FAILED", last_error=error)


def reset_for_retry(conn: sqlite3.Connection, cert_id: str, reenter: str) -> bool:
	"""FAILED -> ``reenter`` with lastError cleared and retry_count bumped."""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			UPDATE ssl_certificates SET
				status = ?,
				last_error = NULL,
				retry_count = retry_count + 1,
				updated_at = ?
			WHERE id = ? AND status = 'FAILED'
			""",
			(_status_value(reenter), utcnow(), cert_id),
		)
	return cur.rowcount > 0


def delete_certificate(conn: sqlite3.Connection, cert_id: str) -> bool:
	"""Delete a certificate row together with its progress log."""
	with transaction(conn):
		conn.execute("DELETE FROM ssl_issue_logs WHERE certificate_id = ?", (cert_id,))
		cur = conn.execute("DELETE FROM ssl_certificates WHERE id = ?", (cert_id,))
	return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Progress log
# ---------------------------------------------------------------------------

def append_issue_log(conn: sqlite3.Connection, cert_id: str, message: str) -> None:
	"""Append one progress line for a certificate."""
	with transaction(conn):
		conn.execute(
			"INSERT INTO ssl_issue_logs (certificate_id, message, created_at) VALUES (?, ?, ?)",
			(cert_id, message, utcnow()),
		)


def clear_issue_logs(conn: sqlite3.Connection, cert_id: str) -> None:
	"""Drop previous progress lines before a new attempt starts."""
	with transaction(conn):
		conn.execute("DELETE FROM ssl_issue_logs WHERE certificate_id = ?", (cert_id,))


def get_issue_logs(conn: sqlite3.Connection, cert_id: str) -> list[sqlite3.Row]:
	"""Progress lines for a certificate in append order."""
	return conn.execute(
		"SELECT message, created_at FROM ssl_issue_logs WHERE certificate_id = ? ORDER BY id",
		(cert_id,),
	).fetchall()
