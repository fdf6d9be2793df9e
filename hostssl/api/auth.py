#!/usr/bin/env python3
#
# hostssl/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bearer token authentication dependencies."""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..db.sqlite_hostings import get_user_by_token
from ..utils.deps import get_conn

_security = HTTPBearer(auto_error=False)


def get_current_user(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
	conn: sqlite3.Connection = Depends(get_conn),
) -> sqlite3.Row:
	"""FastAPI dependency that enforces authentication."""
	if not credentials or not credentials.credentials:
		raise HTTPException(status_code=401, detail="Not authenticated")
	user = get_user_by_token(conn, credentials.credentials)
	if user is None:
		raise HTTPException(status_code=401, detail="Invalid or expired token")
	return user


def require_admin(user_row: sqlite3.Row = Depends(get_current_user)) -> sqlite3.Row:
	"""FastAPI dependency that enforces admin privileges."""
	if not user_row["is_admin"]:
		raise HTTPException(status_code=403, detail="Admin privileges required")
	return user_row
