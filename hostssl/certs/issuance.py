#!/usr/bin/env python3
#
# hostssl/certs/issuance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate issuance: one attempt from VERIFIED to ISSUED or FAILED.

The conditional VERIFIED -> ISSUING write is the only lock: whoever flips
the row owns the attempt, and every later failure lands the row in FAILED
with the message in ``last_error``. PEM material is written in the same
statement that flips ISSUING -> ISSUED, so a certificate is never half
issued.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from ..db.sqlite_certificates import (
	append_issue_log,
	clear_issue_logs,
	get_certificate,
	mark_failed,
	mark_issued,
	update_certificate,
)
from ..utils.time import utcnow
from .acme import (
	ACMEAuthorization,
	ACMEChallenge,
	ACMEClient,
	ExternalAccountBinding,
	create_csr,
	split_chain,
)
from .cloudflare import CloudflareDNS
from .constants import CERTIFICATE_VALIDITY, CertificateStatus, DomainType, Provider
from .domains import delegated_challenge_name, parent_domain_for, subdomain_prefix
from .errors import (
	CertificateNotFoundError,
	ConfigurationError,
	EABNotConfiguredError,
	InvalidStateError,
	NoDNSChallengeError,
	NotConfiguredError,
)
from .google_eab import GoogleEABProvider
from .resolver import DNSVerifier
from .settings import SSLIssuanceConfig, load_issuance_config

_log = logging.getLogger(__name__)

EAB_NOT_CONFIGURED_MESSAGE = (
	"Google Trust Services requires either a Service Account JSON or manual EAB "
	"credentials (GOOGLE_EAB_KEY_ID and GOOGLE_EAB_HMAC_KEY). Please configure in SSL settings."
)


@dataclass(frozen=True)
class IssueResult:
	success: bool
	error: Optional[str] = None


def _error_message(exc: BaseException) -> str:
	return str(exc) or exc.__class__.__name__


class CertificateIssuer:
	"""Runs issuance attempts against one database connection.

	Collaborators default to the real implementations and can be replaced
	for tests: ``acme_factory`` maps a directory URL to an ``ACMEClient``
	style async context manager, ``eab_factory`` maps service account JSON
	to an object with ``get_eab_key()``, and ``sleep`` is the propagation
	wait after a DNS self-heal.
	"""

	def __init__(
		self,
		conn: sqlite3.Connection,
		*,
		config: Optional[SSLIssuanceConfig] = None,
		dns_provider: Optional[Any] = None,
		verifier: Optional[Any] = None,
		eab_factory: Optional[Callable[[str], Any]] = None,
		acme_factory: Optional[Callable[[str], Any]] = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
		now: Callable[[], datetime] = utcnow,
	):
		self.conn = conn
		self._config = config
		self._dns_provider = dns_provider
		self._verifier = verifier or DNSVerifier()
		self._eab_factory = eab_factory or GoogleEABProvider
		self._acme_factory = acme_factory or (lambda url: ACMEClient(url, sleep=sleep))
		self._sleep = sleep
		self._now = now

	def _progress(self, cert_id: str, message: str) -> None:
		append_issue_log(self.conn, cert_id, message)
		_log.info("SSL_ISSUE %s %s", cert_id, message)

	def _dns(self, config: SSLIssuanceConfig):
		if self._dns_provider is None:
			self._dns_provider = CloudflareDNS(config.cloudflare_api_token)
		return self._dns_provider

	async def issue(self, cert_id: str) -> IssueResult:
		"""Run one attempt and report the outcome instead of raising."""
		try:
			await self.run(cert_id)
		except Exception as exc:
			return IssueResult(success=False, error=_error_message(exc))
		return IssueResult(success=True)

	async def run(self, cert_id: str) -> None:
		"""Run one attempt; raises on failure after the row is marked FAILED.

		Missing certificates and wrong starting states raise before anything
		is written, so the stored status stays as it was.
		"""
		cert = get_certificate(self.conn, cert_id)
		if cert is None:
			raise CertificateNotFoundError("Certificate not found")
		if cert["status"] != CertificateStatus.VERIFIED.value:
			raise InvalidStateError(
				f"Certificate status is {cert['status']}, expected {CertificateStatus.VERIFIED.value}"
			)
		if not update_certificate(
			self.conn,
			cert_id,
			expected_status=CertificateStatus.VERIFIED,
			status=CertificateStatus.ISSUING,
		):
			raise InvalidStateError("Certificate is no longer VERIFIED; another issuance owns it")

		clear_issue_logs(self.conn, cert_id)
		self._progress(cert_id, "Starting certificate issuance...")
		self._progress(cert_id, f"Domain: {cert['domain']}")
		self._progress(cert_id, f"Provider: {cert['provider']}")
		self._progress(cert_id, "Status updated to ISSUING")

		try:
			await self._attempt(cert_id, cert)
		except Exception as exc:
			message = _error_message(exc)
			self._progress(cert_id, f"ERROR: {message}")
			mark_failed(self.conn, cert_id, message)
			if isinstance(exc, ConfigurationError):
				_log.warning("SSL_ISSUE %s not configured: %s", cert_id, message)
			else:
				_log.exception("SSL_ISSUE %s failed", cert_id)
			raise

	async def _attempt(self, cert_id: str, cert: sqlite3.Row) -> None:
		config = self._config or load_issuance_config(self.conn)
		if not config.acme_email:
			raise NotConfiguredError("ACME_EMAIL not configured")

		directory_url = config.directory_url(cert["provider"])
		self._progress(cert_id, f"Using ACME directory: {directory_url}")
		self._progress(cert_id, f"Using staging: {str(config.use_staging).lower()}")

		self._progress(cert_id, "Creating ACME client...")
		async with self._acme_factory(directory_url) as client:
			self._progress(cert_id, "Creating ACME account...")
			eab = None
			if cert["provider"] == Provider.GOOGLE_TRUST.value:
				eab = await self._external_account_binding(cert_id, config)
				self._progress(cert_id, "Creating ACME account with External Account Binding...")
			await client.create_account(config.acme_email, eab)
			self._progress(cert_id, "ACME account ready")

			self._progress(cert_id, "Creating certificate order...")
			order = await client.create_order(cert["domain"])
			self._progress(cert_id, "Order created")

			self._progress(cert_id, "Getting authorizations...")
			for authorization in await client.get_authorizations(order):
				await self._authorize(cert_id, cert, config, client, authorization)

			self._progress(cert_id, "Generating certificate private key...")
			private_key, csr_der = create_csr(cert["domain"])
			self._progress(cert_id, "CSR created")

			self._progress(cert_id, "Finalizing order...")
			order = await client.finalize_order(order, csr_der)
			self._progress(cert_id, "Order finalized")

			self._progress(cert_id, "Downloading certificate...")
			chain = await client.get_certificate(order)
			self._progress(cert_id, "Certificate downloaded")

		leaf, ca_chain = split_chain(chain)
		issued_at = self._now()
		expires_at = issued_at + CERTIFICATE_VALIDITY
		if not mark_issued(
			self.conn,
			cert_id,
			certificate=leaf,
			private_key=private_key,
			ca_certificate=ca_chain,
			issued_at=issued_at,
			expires_at=expires_at,
		):
			raise InvalidStateError("Certificate left ISSUING before it could be stored")

		self._progress(cert_id, "Certificate issued successfully!")
		self._progress(cert_id, f"Expires: {expires_at.isoformat()}")

	async def _external_account_binding(
		self,
		cert_id: str,
		config: SSLIssuanceConfig,
	) -> ExternalAccountBinding:
		"""EAB for Google Trust Services; a fresh key per attempt when a service account is set."""
		if config.service_account_json:
			self._progress(cert_id, "Using Service Account to generate EAB key automatically...")
			credentials = await self._eab_factory(config.service_account_json).get_eab_key()
			self._progress(cert_id, "EAB key generated successfully from Service Account")
			return ExternalAccountBinding(kid=credentials.key_id, hmac_key=credentials.hmac_key)

		if not config.eab_key_id or not config.eab_hmac_key:
			raise EABNotConfiguredError(EAB_NOT_CONFIGURED_MESSAGE)
		self._progress(cert_id, "Using manually configured EAB credentials")
		return ExternalAccountBinding(kid=config.eab_key_id, hmac_key=config.eab_hmac_key)

	async def _authorize(
		self,
		cert_id: str,
		cert: sqlite3.Row,
		config: SSLIssuanceConfig,
		client: Any,
		authorization: ACMEAuthorization,
	) -> None:
		identifier = authorization.identifier.get("value", cert["domain"])
		self._progress(cert_id, f"Processing authorization for {identifier}")

		challenge = _dns_challenge(authorization)
		key_authorization = client.get_challenge_key_authorization(challenge)
		self._progress(cert_id, f"Challenge key authorization: {key_authorization[:20]}...")

		self._progress(cert_id, "Verifying DNS record is still in place...")
		delegated = cert["domain_type"] == DomainType.SUBDOMAIN.value
		verified = await self._verifier.verify_txt(
			cert["domain"],
			key_authorization,
			cert["cname_record"] if delegated else None,
		)
		if not verified:
			self._progress(cert_id, "DNS record has different value, need to update...")
			if delegated and cert["dns_record_id"]:
				await self._self_heal(cert_id, cert, config, key_authorization)
			else:
				self._progress(cert_id, "DNS not under our control; continuing with CA validation")

		self._progress(cert_id, "Completing challenge...")
		await client.complete_challenge(challenge)
		self._progress(cert_id, "Challenge completion requested")

		self._progress(cert_id, "Waiting for challenge validation...")
		await client.wait_for_valid_status(challenge)
		self._progress(cert_id, "Challenge validated!")

	async def _self_heal(
		self,
		cert_id: str,
		cert: sqlite3.Row,
		config: SSLIssuanceConfig,
		key_authorization: str,
	) -> None:
		"""Replace the delegated TXT record with the value the CA expects."""
		self._progress(cert_id, "DNS self-heal: replacing challenge TXT record")
		if not config.intermediate_domain:
			raise NotConfiguredError("INTERMEDIATE_DOMAIN not configured")
		parent = parent_domain_for(cert["domain"], config.service_domains)
		if not parent:
			raise NotConfiguredError("Service domain not found")

		dns = self._dns(config)
		try:
			await dns.delete_record(cert["dns_record_id"])
			self._progress(cert_id, "Deleted old DNS record")
		except Exception as exc:
			_log.warning("SSL_ISSUE %s could not delete old record %s: %s", cert_id, cert["dns_record_id"], exc)
			self._progress(cert_id, f"Warning: Failed to delete old DNS record: {exc}")
		update_certificate(self.conn, cert_id, dns_record_id=None)

		txt_name = delegated_challenge_name(subdomain_prefix(cert["domain"], parent), config.intermediate_domain)
		self._progress(cert_id, f"Creating TXT record: {txt_name}")
		record_ref = await dns.create_record("TXT", txt_name, key_authorization)
		update_certificate(self.conn, cert_id, dns_record_id=record_ref, txt_record=key_authorization)
		self._progress(cert_id, "Updated DNS record with ACME challenge value")

		self._progress(cert_id, f"Waiting for DNS propagation ({config.propagation_delay:.0f} seconds)...")
		await self._sleep(config.propagation_delay)
		self._progress(cert_id, "DNS self-heal complete")


def _dns_challenge(authorization: ACMEAuthorization) -> ACMEChallenge:
	for challenge in authorization.challenges:
		if challenge.type == "dns-01":
			return challenge
	raise NoDNSChallengeError("No DNS-01 challenge found")
