#!/usr/bin/env python3
#
# hostssl/db/sqlite_runtime.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite connection handling for the request handlers and issuance tasks.

Every connection stores ``timestamp`` columns as UTC ISO-8601 strings with a
``Z`` suffix and reads them back as aware datetimes.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from ..utils.time import isoformat_utc

_log = logging.getLogger(__name__)

# Marks an update argument that was not passed, as opposed to an explicit None
UNSET: object = object()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_BUSY_TIMEOUT_SECONDS = 30.0
# Back-off between attempts to switch a locked database to WAL
_WAL_RETRY_DELAYS = (0.1, 0.2, 0.4, 0.8)


def _read_timestamp(raw: bytes) -> datetime:
	text = raw.decode("utf-8", errors="replace")
	try:
		value = datetime.fromisoformat(text.replace("Z", "+00:00"))
	except ValueError:
		_log.error("SQLITE corrupt timestamp %r, reading it as epoch", text)
		return _EPOCH
	if value.tzinfo is None:
		value = value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


# Process-wide registration
sqlite3.register_adapter(datetime, isoformat_utc)
sqlite3.register_converter("timestamp", _read_timestamp)


_open: set[sqlite3.Connection] = set()
_open_lock = threading.Lock()


def _enable_wal(conn: sqlite3.Connection) -> None:
	for delay in (*_WAL_RETRY_DELAYS, None):
		try:
			if conn.execute("PRAGMA journal_mode").fetchone()[0].lower() != "wal":
				conn.execute("PRAGMA journal_mode=WAL")
			return
		except sqlite3.OperationalError as exc:
			if delay is None or "locked" not in str(exc).lower():
				raise
			_log.debug("SQLITE database locked while enabling WAL, retrying in %.1fs", delay)
			time.sleep(delay)


def connect(db_path: Path) -> sqlite3.Connection:
	"""Open a tracked connection to the certificate database.

	Background issuance writes while request handlers read, so the database
	runs in WAL mode with foreign keys enforced.
	"""
	db_path.parent.mkdir(parents=True, exist_ok=True)
	conn = sqlite3.connect(
		str(db_path),
		detect_types=sqlite3.PARSE_DECLTYPES,
		check_same_thread=False,
		timeout=_BUSY_TIMEOUT_SECONDS,
	)
	conn.row_factory = sqlite3.Row
	_enable_wal(conn)
	conn.execute("PRAGMA foreign_keys=ON")
	with _open_lock:
		_open.add(conn)
	return conn


def close_connection(conn: sqlite3.Connection) -> None:
	with _open_lock:
		_open.discard(conn)
	conn.close()


def close_all_connections() -> int:
	"""Close whatever is still open at shutdown and return how many closed."""
	with _open_lock:
		pending = list(_open)
		_open.clear()
	closed = 0
	for conn in pending:
		try:
			conn.close()
		except sqlite3.Error as exc:
			_log.warning("SQLITE failed to close connection: %s", exc)
		else:
			closed += 1
	return closed


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False):
	"""Commit on success, roll back on error.

	``immediate`` takes the write lock up front; status transitions use it so
	two workers cannot both pass the same conditional update. Nested use joins
	the outer transaction.
	"""
	if conn.in_transaction:
		yield
		return
	conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
	try:
		yield
	except BaseException:
		if conn.in_transaction:
			conn.rollback()
		raise
	conn.commit()
