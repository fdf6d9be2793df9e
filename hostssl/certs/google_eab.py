#!/usr/bin/env python3
#
# hostssl/certs/google_eab.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""External Account Binding keys from the Google Cloud Public CA API.

Google Trust Services only accepts ACME accounts bound to an EAB key. With
a service account holding the "Public CA External Account Key Creator"
role a fresh key is minted for every issuance attempt: the service account
signs a JWT assertion, exchanges it for an OAuth access token and calls
``externalAccountKeys.create``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import jwt
from pydantic import BaseModel, ValidationError

from .constants import HTTP_TIMEOUT_SECONDS
from .errors import (
	APINotEnabledError,
	AuthFailedError,
	EABAPIError,
	InvalidCredentialError,
	MalformedResponseError,
	NotConfiguredError,
	PermissionDeniedError,
)

_log = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
PUBLIC_CA_API = "https://publicca.googleapis.com/v1"
_JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
_ASSERTION_LIFETIME = 3600


class ServiceAccountKey(BaseModel):
	"""Fields of a service account JSON key file that are used here."""
	type: Optional[str] = None
	project_id: str
	private_key_id: Optional[str] = None
	private_key: str
	client_email: str
	token_uri: str = DEFAULT_TOKEN_URI


class AccessTokenResponse(BaseModel):
	access_token: Optional[str] = None
	expires_in: Optional[int] = None
	token_type: Optional[str] = None


class ExternalAccountKey(BaseModel):
	name: Optional[str] = None
	keyId: Optional[str] = None
	b64MacKey: Optional[str] = None


@dataclass(frozen=True)
class EABCredentials:
	"""Single-use key id / HMAC pair for ACME account registration."""
	key_id: str
	hmac_key: str


def parse_service_account(raw: Optional[str]) -> ServiceAccountKey:
	"""Validate service account JSON text."""
	if not raw:
		raise NotConfiguredError(
			"Google Service Account JSON not configured. "
			"Please upload your service account key file in SSL settings."
		)
	try:
		data = json.loads(raw)
	except ValueError as exc:
		raise InvalidCredentialError("Invalid Google Service Account JSON format") from exc
	if not isinstance(data, dict):
		raise InvalidCredentialError("Invalid Google Service Account JSON format")
	missing = [f for f in ("project_id", "client_email", "private_key") if not data.get(f)]
	if missing:
		raise InvalidCredentialError(f"Invalid Service Account: missing {', '.join(missing)}")
	try:
		return ServiceAccountKey.model_validate(data)
	except ValidationError as exc:
		raise InvalidCredentialError(f"Invalid Service Account: {exc}") from exc


class GoogleEABProvider:
	"""Mints EAB credentials with a service account key."""

	def __init__(
		self,
		service_account_json: Optional[str],
		*,
		timeout: float = HTTP_TIMEOUT_SECONDS,
		transport: Optional[httpx.AsyncBaseTransport] = None,
		clock: Callable[[], float] = time.time,
	):
		self.service_account_json = service_account_json
		self.timeout = timeout
		self._transport = transport
		self._clock = clock

	def _client(self) -> httpx.AsyncClient:
		return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

	def _assertion(self, account: ServiceAccountKey) -> str:
		now = int(self._clock())
		claims = {
			"iss": account.client_email,
			"scope": CLOUD_PLATFORM_SCOPE,
			"aud": account.token_uri,
			"iat": now,
			"exp": now + _ASSERTION_LIFETIME,
		}
		headers = {"kid": account.private_key_id} if account.private_key_id else None
		try:
			return jwt.encode(claims, account.private_key, algorithm="RS256", headers=headers)
		except (ValueError, TypeError, jwt.PyJWTError) as exc:
			raise InvalidCredentialError(f"Service account private key is unusable: {exc}") from exc

	async def _access_token(self, client: httpx.AsyncClient, account: ServiceAccountKey) -> str:
		resp = await client.post(
			account.token_uri,
			data={"grant_type": _JWT_BEARER_GRANT, "assertion": self._assertion(account)},
		)
		if not resp.is_success:
			_log.warning("GOOGLE_EAB token exchange failed: %s %s", resp.status_code, resp.text[:200])
			raise AuthFailedError(f"Failed to get access token from Google ({resp.status_code})")
		try:
			token = AccessTokenResponse.model_validate(resp.json()).access_token
		except (ValueError, ValidationError):
			token = None
		if not token:
			raise AuthFailedError("Failed to get access token from Google")
		return token

	async def get_eab_key(self) -> EABCredentials:
		"""Create a new external account key; each key is meant for one registration."""
		account = parse_service_account(self.service_account_json)
		_log.info("GOOGLE_EAB using service account %s (project %s)", account.client_email, account.project_id)

		url = f"{PUBLIC_CA_API}/projects/{account.project_id}/locations/global/externalAccountKeys"
		async with self._client() as client:
			token = await self._access_token(client, account)
			resp = await client.post(url, json={}, headers={"Authorization": f"Bearer {token}"})

		if resp.status_code == 403:
			raise PermissionDeniedError(
				"Permission denied. Make sure the Service Account has the "
				"\"Public CA External Account Key Creator\" role and Public CA API is enabled."
			)
		if resp.status_code == 404:
			raise APINotEnabledError(
				"Public CA API not found. Make sure to enable \"Public Certificate Authority API\" "
				"in your Google Cloud project."
			)
		if not resp.is_success:
			_log.error("GOOGLE_EAB API error: %s %s", resp.status_code, resp.text[:500])
			raise EABAPIError(f"Google API error: {resp.status_code} - {resp.text}", status_code=resp.status_code)

		try:
			key = ExternalAccountKey.model_validate(resp.json())
		except (ValueError, ValidationError) as exc:
			raise MalformedResponseError("Invalid response from Google API: not a JSON object") from exc
		if not key.keyId or not key.b64MacKey:
			raise MalformedResponseError("Invalid response from Google API: missing keyId or b64MacKey")

		_log.info("GOOGLE_EAB created EAB key %s...", key.keyId[:10])
		return EABCredentials(key_id=key.keyId, hmac_key=key.b64MacKey)

	async def test_service_account(self) -> dict[str, Any]:
		"""Check the key authenticates; never mints an EAB key."""
		try:
			account = parse_service_account(self.service_account_json)
			async with self._client() as client:
				await self._access_token(client, account)
		except (NotConfiguredError, InvalidCredentialError, AuthFailedError) as exc:
			return {"ok": False, "message": str(exc), "project_id": None, "email": None}
		except httpx.HTTPError as exc:
			return {"ok": False, "message": f"Google connection failed: {exc}", "project_id": None, "email": None}
		return {
			"ok": True,
			"message": "Service Account authenticated successfully",
			"project_id": account.project_id,
			"email": account.client_email,
		}
