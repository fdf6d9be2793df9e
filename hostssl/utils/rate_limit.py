#!/usr/bin/env python3
#
# hostssl/utils/rate_limit.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Rate limiting for SSL endpoints using slowapi."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

RATE_LIMIT_DEFAULT = "60/minute"   # Admin diagnostics (outbound API calls)
RATE_LIMIT_REQUEST = "10/minute"   # New certificate requests
RATE_LIMIT_ISSUE = "5/minute"      # Each call can start an ACME order
RATE_LIMIT_VERIFY = "30/minute"    # Users poll this while DNS propagates

limiter = Limiter(key_func=get_remote_address)

__all__ = [
	"RATE_LIMIT_DEFAULT",
	"RATE_LIMIT_ISSUE",
	"RATE_LIMIT_REQUEST",
	"RATE_LIMIT_VERIFY",
	"limiter",
]
