#!/usr/bin/env python3
#
# hostssl/tasks/reconcile.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Periodic reconciliation of issuance attempts that never finished."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import aiosqlite

# Registers the process-global datetime adapter used for the cutoff parameter
from ..db import sqlite_runtime  # noqa: F401
from ..utils.time import utcnow

_log = logging.getLogger(__name__)

__all__ = [
	"INTERRUPTED_MESSAGE",
	"reset_stuck_issuance",
	"reconcile_loop",
]

INTERRUPTED_MESSAGE = "Issuance interrupted"


async def reset_stuck_issuance(
	db_path: Path,
	older_than: timedelta,
	*,
	now: Optional[datetime] = None,
) -> list[str]:
	"""Move ISSUING rows untouched for ``older_than`` to FAILED.

	An attempt is bounded by the ACME polling limits and finishes well
	inside the default bound, so only rows left behind by a crashed or
	restarted worker match. Returns the ids that were reset.
	"""
	if not Path(db_path).exists():
		_log.warning("RECONCILE SQLite database not found at %s", db_path)
		return []

	cutoff = (now or utcnow()) - older_than
	async with aiosqlite.connect(db_path) as db:
		db.row_factory = aiosqlite.Row
		await db.execute("BEGIN IMMEDIATE")
		try:
			cursor = await db.execute(
				"SELECT id FROM ssl_certificates WHERE status = 'ISSUING' AND updated_at < ?",
				(cutoff,),
			)
			ids = [row["id"] for row in await cursor.fetchall()]
			stamp = now or utcnow()
			for cert_id in ids:
				await db.execute(
					"""
					UPDATE ssl_certificates SET status = 'FAILED', last_error = ?, updated_at = ?
					WHERE id = ? AND status = 'ISSUING'
					""",
					(INTERRUPTED_MESSAGE, stamp, cert_id),
				)
			await db.commit()
		except Exception:
			await db.rollback()
			raise

	for cert_id in ids:
		_log.warning("RECONCILE certificate %s stuck in ISSUING, marked FAILED", cert_id)
	return ids


async def reconcile_loop(
	db_path: Path,
	older_than: timedelta,
	interval: float,
	stop_event: asyncio.Event,
) -> None:
	"""Run :func:`reset_stuck_issuance` every ``interval`` seconds until stopped."""
	_log.info(
		"RECONCILE started (interval=%.0fs, stuck after %s)",
		interval,
		older_than,
	)
	while not stop_event.is_set():
		try:
			await reset_stuck_issuance(db_path, older_than)
		except Exception:
			_log.exception("RECONCILE pass failed")
		try:
			await asyncio.wait_for(stop_event.wait(), timeout=interval)
		except asyncio.TimeoutError:
			pass
	_log.info("RECONCILE stopped")
