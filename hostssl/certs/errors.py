#!/usr/bin/env python3
#
# hostssl/certs/errors.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Exception hierarchy for certificate issuance.

Configuration errors need operator action and are never retried
automatically. Credential errors carry a hint about the missing permission
where the upstream API gives one. Protocol errors end the current attempt.
DNS propagation delays are not errors at all: the verifier answers False.
"""

from __future__ import annotations


class SSLError(Exception):
	"""Base class for all issuance workflow errors."""


class CertificateNotFoundError(SSLError):
	"""The certificate (or its owning hosting) does not exist."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(SSLError):
	"""A required setting is missing."""


class NotConfiguredError(ConfigurationError):
	"""A credential or setting the operation needs has not been configured."""


class EABNotConfiguredError(ConfigurationError):
	"""Google Trust Services needs EAB material and none is configured."""


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class CredentialError(SSLError):
	"""A third-party credential was rejected."""


class ProviderAuthError(CredentialError):
	"""The DNS provider rejected the API token."""


class PermissionDeniedError(CredentialError):
	"""The service account lacks the role required by the CA API."""


class AuthFailedError(CredentialError):
	"""No access token could be obtained for the service account."""


class InvalidCredentialError(CredentialError):
	"""Service account JSON is malformed or missing required fields."""


# ---------------------------------------------------------------------------
# Protocol / state
# ---------------------------------------------------------------------------

class ProtocolError(SSLError):
	"""Caller misuse or an unexpected upstream protocol shape."""


class InvalidStateError(ProtocolError):
	"""The certificate is not in a status that allows the operation."""


class NoDNSChallengeError(ProtocolError):
	"""The CA offered no dns-01 challenge for an authorization."""


class MalformedResponseError(ProtocolError):
	"""An upstream response is missing required fields."""


class ACMEError(ProtocolError):
	"""The ACME server returned a problem document or an invalid status."""


class RequestRejectedError(ProtocolError):
	"""A certificate request was refused; ``code`` names the reason."""

	def __init__(self, message: str, code: str):
		super().__init__(message)
		self.code = code


# ---------------------------------------------------------------------------
# DNS provider
# ---------------------------------------------------------------------------

class DNSProviderError(SSLError):
	"""Base class for DNS provider API failures."""


class ZoneNotFoundError(DNSProviderError):
	"""No zone exists at the provider for the record's apex domain."""


class ProviderAPIError(DNSProviderError):
	"""The DNS provider returned a non-success response."""

	def __init__(self, message: str, status_code: int | None = None):
		super().__init__(message)
		self.status_code = status_code


class InvalidRecordRefError(DNSProviderError):
	"""A stored record reference is not of the form ``zoneId:recordId``."""


# ---------------------------------------------------------------------------
# Google Public CA (EAB)
# ---------------------------------------------------------------------------

class APINotEnabledError(SSLError):
	"""The Public Certificate Authority API is not enabled for the project."""


class EABAPIError(SSLError):
	"""The Public CA API returned an unexpected error status."""

	def __init__(self, message: str, status_code: int | None = None):
		super().__init__(message)
		self.status_code = status_code
