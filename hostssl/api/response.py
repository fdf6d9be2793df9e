#!/usr/bin/env python3
#
# hostssl/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from ..certs.errors import (
	CertificateNotFoundError,
	ConfigurationError,
	CredentialError,
	DNSProviderError,
	ProtocolError,
	RequestRejectedError,
	SSLError,
)


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a normalized success response."""
	payload: dict[str, Any] = {"status": "ok"}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	if extra:
		payload.update(extra)
	return payload


def http_error(exc: SSLError) -> HTTPException:
	"""Translate a workflow error into the HTTP error the route raises.

	Caller mistakes and rejected credentials are 400, a missing certificate
	is 404, missing configuration and upstream DNS provider failures are 500.
	"""
	if isinstance(exc, CertificateNotFoundError):
		return HTTPException(status_code=404, detail=str(exc))
	if isinstance(exc, RequestRejectedError):
		return HTTPException(status_code=400, detail={"error": exc.code, "message": str(exc)})
	if isinstance(exc, (ProtocolError, CredentialError)):
		return HTTPException(status_code=400, detail=str(exc))
	if isinstance(exc, (ConfigurationError, DNSProviderError)):
		return HTTPException(status_code=500, detail=str(exc))
	return HTTPException(status_code=500, detail=str(exc) or "SSL operation failed")
