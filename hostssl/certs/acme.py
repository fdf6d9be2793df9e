#!/usr/bin/env python3
#
# hostssl/certs/acme.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Lightweight ACME v2 client for dns-01 issuance (RFC 8555)."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID
from pydantic import BaseModel, Field, ValidationError

from ..utils.crypto import b64url, b64url_decode, sha256
from .errors import ACMEError, MalformedResponseError

_log = logging.getLogger(__name__)

ACME_REQUEST_TIMEOUT = 30.0
CHALLENGE_POLL_ATTEMPTS = 60
CHALLENGE_POLL_DELAY = 2.0

_BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
_PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
_PEM_END = "-----END CERTIFICATE-----"


# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------

class ACMEChallenge(BaseModel):
	type: str
	url: str
	token: str = ""
	status: str = "pending"
	error: Optional[dict[str, Any]] = None


class ACMEAuthorization(BaseModel):
	url: str = ""
	status: str = "pending"
	identifier: dict[str, Any] = Field(default_factory=dict)
	challenges: list[ACMEChallenge] = Field(default_factory=list)


class ACMEOrder(BaseModel):
	url: str = ""
	status: str
	authorizations: list[str] = Field(default_factory=list)
	finalize: str
	certificate: Optional[str] = None
	error: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class ExternalAccountBinding:
	"""EAB key id and base64url-encoded HMAC key issued by the CA."""
	kid: str
	hmac_key: str


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _problem_detail(resp: httpx.Response) -> str:
	"""Parse an ACME problem document into a readable message."""
	try:
		error = resp.json()
	except ValueError:
		return resp.text or f"HTTP {resp.status_code}"
	if not isinstance(error, dict):
		return resp.text
	detail = error.get("detail", "")
	error_type = error.get("type", "")
	if detail:
		return f"{detail} ({error_type})" if error_type else detail
	return resp.text


def _is_bad_nonce(resp: httpx.Response) -> bool:
	if resp.status_code != 400:
		return False
	try:
		return resp.json().get("type") == _BAD_NONCE
	except (ValueError, AttributeError):
		return False


def jwk_thumbprint(jwk: dict) -> str:
	"""Calculate JWK thumbprint (RFC 7638)."""
	if jwk.get("kty") != "EC":
		raise ValueError(f"Unsupported key type: {jwk.get('kty')}")
	canonical = {"crv": jwk["crv"], "kty": "EC", "x": jwk["x"], "y": jwk["y"]}
	canonical_json = json.dumps(canonical, separators=(",", ":"), sort_keys=True)
	return b64url(sha256(canonical_json.encode("utf-8")))


def create_csr(domain: str) -> tuple[str, bytes]:
	"""Generate an RSA-2048 key and a CSR with CN and SAN set to ``domain``.

	Returns the PEM private key and the DER encoded CSR.
	"""
	domain_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
	csr = (
		x509.CertificateSigningRequestBuilder()
		.subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
		.add_extension(
			x509.SubjectAlternativeName([x509.DNSName(domain)]),
			critical=False,
		)
		.sign(domain_key, hashes.SHA256())
	)
	key_pem = domain_key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.PKCS8,
		encryption_algorithm=serialization.NoEncryption(),
	).decode("ascii")
	return key_pem, csr.public_bytes(serialization.Encoding.DER)


def split_chain(pem: str) -> tuple[str, str]:
	"""Split a PEM bundle into the leaf certificate and the remaining CA chain."""
	blocks = []
	rest = pem
	while _PEM_BEGIN in rest:
		start = rest.find(_PEM_BEGIN)
		end = rest.find(_PEM_END, start)
		if end < 0:
			break
		end += len(_PEM_END)
		blocks.append(rest[start:end])
		rest = rest[end:]
	if not blocks:
		raise MalformedResponseError("Certificate chain contains no PEM certificate")
	leaf = blocks[0] + "\n"
	ca = "\n".join(blocks[1:]) + "\n" if len(blocks) > 1 else ""
	return leaf, ca


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ACMEClient:
	"""ACME v2 client bound to one in-memory P-256 account key."""

	def __init__(
		self,
		directory_url: str,
		*,
		account_key: Optional[ec.EllipticCurvePrivateKey] = None,
		timeout: float = ACME_REQUEST_TIMEOUT,
		transport: Optional[httpx.AsyncBaseTransport] = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	):
		self.directory_url = directory_url
		self.directory: dict = {}
		self.nonce: Optional[str] = None
		self.account_key = account_key or ec.generate_private_key(ec.SECP256R1())
		self.account_url: Optional[str] = None
		self.http_client: Optional[httpx.AsyncClient] = None
		self._timeout = timeout
		self._transport = transport
		self._sleep = sleep

	async def __aenter__(self):
		self.http_client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
		return self

	async def __aexit__(self, *args):
		if self.http_client:
			await self.http_client.aclose()
			self.http_client = None

	async def _fetch_directory(self) -> dict:
		if self.directory:
			return self.directory
		if not self.http_client:
			raise RuntimeError("HTTP client not initialized")
		resp = await self.http_client.get(self.directory_url)
		if not resp.is_success:
			raise ACMEError(f"Failed to fetch ACME directory: {_problem_detail(resp)}")
		directory = resp.json()
		if not isinstance(directory, dict) or "newNonce" not in directory:
			raise MalformedResponseError("ACME directory is missing newNonce")
		self.directory = directory
		return directory

	async def _get_nonce(self) -> str:
		"""Get a fresh nonce, reusing the last Replay-Nonce when available."""
		if not self.http_client:
			raise RuntimeError("HTTP client not initialized")
		if self.nonce:
			nonce = self.nonce
			self.nonce = None
			return nonce

		directory = await self._fetch_directory()
		resp = await self.http_client.head(directory["newNonce"])
		if "Replay-Nonce" not in resp.headers:
			# Fallback: GET request to newNonce
			resp = await self.http_client.get(directory["newNonce"])
		if "Replay-Nonce" not in resp.headers:
			raise ACMEError("Failed to obtain ACME nonce")
		return resp.headers["Replay-Nonce"]

	def _get_jwk(self) -> dict:
		numbers = self.account_key.public_key().public_numbers()
		# P-256 coordinates are 32 bytes each
		return {
			"kty": "EC",
			"crv": "P-256",
			"x": b64url(numbers.x.to_bytes(32, "big")),
			"y": b64url(numbers.y.to_bytes(32, "big")),
		}

	def _sign_payload(self, payload: bytes) -> bytes:
		"""Sign payload with account key (ES256)."""
		sig_der = self.account_key.sign(payload, ec.ECDSA(hashes.SHA256()))
		r, s = decode_dss_signature(sig_der)
		# ES256 signature is r || s, each 32 bytes
		return r.to_bytes(32, "big") + s.to_bytes(32, "big")

	def _external_account_binding(self, eab: ExternalAccountBinding, url: str) -> dict:
		"""Inner HS256 JWS over the account JWK (RFC 8555 section 7.3.4)."""
		protected_b64 = b64url(json.dumps({"alg": "HS256", "kid": eab.kid, "url": url}).encode("utf-8"))
		payload_b64 = b64url(json.dumps(self._get_jwk()).encode("utf-8"))
		try:
			key = b64url_decode(eab.hmac_key)
		except ValueError as exc:
			raise ACMEError("EAB HMAC key is not valid base64url") from exc
		signature = hmac.new(key, f"{protected_b64}.{payload_b64}".encode("ascii"), hashlib.sha256).digest()
		return {"protected": protected_b64, "payload": payload_b64, "signature": b64url(signature)}

	async def _signed_request(
		self,
		url: str,
		payload: Optional[dict],
		*,
		accept: Optional[str] = None,
		retry_bad_nonce: bool = True,
	) -> httpx.Response:
		"""Make a signed JWS request; ``payload=None`` is a POST-as-GET."""
		if not self.http_client:
			raise RuntimeError("HTTP client not initialized")

		protected: dict[str, Any] = {"alg": "ES256", "nonce": await self._get_nonce(), "url": url}
		if self.account_url:
			protected["kid"] = self.account_url
		else:
			protected["jwk"] = self._get_jwk()

		protected_b64 = b64url(json.dumps(protected).encode("utf-8"))
		payload_b64 = "" if payload is None else b64url(json.dumps(payload).encode("utf-8"))
		signature = self._sign_payload(f"{protected_b64}.{payload_b64}".encode("ascii"))

		headers = {"Content-Type": "application/jose+json"}
		if accept:
			headers["Accept"] = accept
		resp = await self.http_client.post(
			url,
			json={"protected": protected_b64, "payload": payload_b64, "signature": b64url(signature)},
			headers=headers,
		)

		# Store replay nonce for next request
		if "Replay-Nonce" in resp.headers:
			self.nonce = resp.headers["Replay-Nonce"]

		if retry_bad_nonce and _is_bad_nonce(resp):
			_log.info("ACME badNonce from %s, retrying once", url)
			return await self._signed_request(url, payload, accept=accept, retry_bad_nonce=False)
		return resp

	async def create_account(self, email: str, eab: Optional[ExternalAccountBinding] = None) -> str:
		"""Register the account key, optionally bound to an external account."""
		directory = await self._fetch_directory()
		url = directory.get("newAccount")
		if not url:
			raise MalformedResponseError("ACME directory is missing newAccount")

		payload: dict[str, Any] = {
			"termsOfServiceAgreed": True,
			"contact": [f"mailto:{email}"],
		}
		if eab is not None:
			payload["externalAccountBinding"] = self._external_account_binding(eab, url)

		resp = await self._signed_request(url, payload)
		if resp.status_code not in (200, 201):
			raise ACMEError(f"Failed to register account: {_problem_detail(resp)}")

		self.account_url = resp.headers.get("Location")
		if not self.account_url:
			raise MalformedResponseError("No account URL in response")
		_log.info("ACME registered account %s (eab=%s)", self.account_url, eab is not None)
		return self.account_url

	async def create_order(self, domain: str) -> ACMEOrder:
		"""Create a new order for a single DNS identifier."""
		directory = await self._fetch_directory()
		resp = await self._signed_request(
			directory["newOrder"],
			{"identifiers": [{"type": "dns", "value": domain}]},
		)
		if resp.status_code not in (200, 201):
			raise ACMEError(f"Failed to create order: {_problem_detail(resp)}")
		order = self._parse(ACMEOrder, resp, "order")
		order.url = resp.headers.get("Location", "")
		if not order.url:
			raise MalformedResponseError("No order URL in response")
		return order

	async def get_authorizations(self, order: ACMEOrder) -> list[ACMEAuthorization]:
		authorizations = []
		for auth_url in order.authorizations:
			resp = await self._signed_request(auth_url, None)
			if resp.status_code != 200:
				raise ACMEError(f"Failed to get authorization: {_problem_detail(resp)}")
			authorization = self._parse(ACMEAuthorization, resp, "authorization")
			authorization.url = auth_url
			authorizations.append(authorization)
		return authorizations

	def get_challenge_key_authorization(self, challenge: ACMEChallenge) -> str:
		"""Value to publish for a challenge; dns-01 uses the SHA-256 digest form."""
		key_auth = f"{challenge.token}.{jwk_thumbprint(self._get_jwk())}"
		if challenge.type == "dns-01":
			return b64url(sha256(key_auth.encode("ascii")))
		return key_auth

	async def complete_challenge(self, challenge: ACMEChallenge) -> ACMEChallenge:
		"""Tell the CA the challenge response is in place."""
		resp = await self._signed_request(challenge.url, {})
		if resp.status_code not in (200, 202):
			raise ACMEError(f"Failed to respond to challenge: {_problem_detail(resp)}")
		return self._parse(ACMEChallenge, resp, "challenge")

	async def wait_for_valid_status(
		self,
		challenge: ACMEChallenge,
		*,
		attempts: int = CHALLENGE_POLL_ATTEMPTS,
		delay: float = CHALLENGE_POLL_DELAY,
	) -> ACMEChallenge:
		"""Poll a challenge until valid; invalid or timeout is a hard failure."""
		for _ in range(attempts):
			resp = await self._signed_request(challenge.url, None)
			if resp.status_code != 200:
				raise ACMEError(f"Failed to poll challenge: {_problem_detail(resp)}")
			current = self._parse(ACMEChallenge, resp, "challenge")
			if current.status == "valid":
				return current
			if current.status == "invalid":
				detail = (current.error or {}).get("detail") or "Challenge validation failed"
				raise ACMEError(f"Challenge invalid: {detail}")
			await self._sleep(delay)
		raise ACMEError("Timeout waiting for challenge validation")

	async def _poll_order(self, order: ACMEOrder, attempts: int, delay: float) -> ACMEOrder:
		for _ in range(attempts):
			resp = await self._signed_request(order.url, None)
			if resp.status_code != 200:
				raise ACMEError(f"Failed to poll order: {_problem_detail(resp)}")
			current = self._parse(ACMEOrder, resp, "order")
			current.url = order.url
			if current.status == "valid" and current.certificate:
				return current
			if current.status in ("invalid", "expired", "revoked"):
				detail = (current.error or {}).get("detail") or current.status
				raise ACMEError(f"Order failed: {detail}")
			await self._sleep(delay)
		raise ACMEError("Timeout waiting for the order certificate URL")

	async def finalize_order(
		self,
		order: ACMEOrder,
		csr_der: bytes,
		*,
		attempts: int = CHALLENGE_POLL_ATTEMPTS,
		delay: float = CHALLENGE_POLL_DELAY,
	) -> ACMEOrder:
		"""Submit the CSR and wait until the certificate URL is available."""
		resp = await self._signed_request(order.finalize, {"csr": b64url(csr_der)})
		if resp.status_code not in (200, 201):
			raise ACMEError(f"Failed to finalize order: {_problem_detail(resp)}")
		finalized = self._parse(ACMEOrder, resp, "order")
		finalized.url = resp.headers.get("Location", order.url)
		if finalized.status != "valid" or not finalized.certificate:
			finalized = await self._poll_order(finalized, attempts, delay)
		return finalized

	async def get_certificate(self, order: ACMEOrder) -> str:
		"""Download the PEM certificate chain of a valid order."""
		if not order.certificate:
			raise MalformedResponseError("No certificate URL in order")
		resp = await self._signed_request(order.certificate, None, accept="application/pem-certificate-chain")
		if resp.status_code != 200:
			raise ACMEError(f"Failed to download certificate: {_problem_detail(resp)}")
		return resp.text

	@staticmethod
	def _parse(model: type[BaseModel], resp: httpx.Response, what: str):
		try:
			return model.model_validate(resp.json())
		except (ValueError, ValidationError) as exc:
			raise MalformedResponseError(f"Malformed ACME {what} response") from exc
