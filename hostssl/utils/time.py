#!/usr/bin/env python3
#
# hostssl/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Timezone-aware time utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
	"""Return the current UTC time as a timezone-aware datetime."""
	return datetime.now(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
	"""Render a datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
	if dt is None:
		return None
	if dt.tzinfo is None:
		raise ValueError("Naive datetime not allowed - must be timezone-aware")
	return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
