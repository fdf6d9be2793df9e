#!/usr/bin/env python3
#
# hostssl/utils/crypto.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Small encoding and token helpers shared by the ACME and auth layers."""

from __future__ import annotations

import base64
import hashlib
import secrets


def b64url(data: bytes) -> str:
	"""Base64url encode without padding."""
	return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
	"""Decode base64url text, tolerating missing padding."""
	padded = value + "=" * (-len(value) % 4)
	return base64.urlsafe_b64decode(padded.encode("ascii"))


def sha256(data: bytes) -> bytes:
	"""SHA256 hash."""
	return hashlib.sha256(data).digest()


def new_verification_token() -> str:
	"""Generate a random domain verification token (32 bytes, base64url)."""
	return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
	"""Hash a bearer token for storage and lookup using SHA-256.

	Tokens are stored hashed so that database leaks don't
	directly expose valid authentication tokens.
	"""
	return hashlib.sha256(token.encode("utf-8")).hexdigest()
