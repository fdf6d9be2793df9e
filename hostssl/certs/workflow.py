#!/usr/bin/env python3
#
# hostssl/certs/workflow.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""User-facing certificate workflow: request, verify, issue, retry, delete."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from ..db.sqlite_certificates import (
	create_certificate,
	delete_certificate as db_delete_certificate,
	find_open_certificate,
	get_certificate,
	reset_for_retry,
	update_certificate,
)
from ..db.sqlite_hostings import (
	HOSTING_ACTIVE,
	find_hosting_for_custom_domain,
	find_hosting_for_subdomain,
)
from ..utils.crypto import new_verification_token
from ..utils.time import utcnow
from .cloudflare import CloudflareDNS
from .constants import RETRY_ENTRY_STATUSES, CertificateStatus, DomainType, Provider
from .domains import (
	challenge_name,
	delegated_challenge_name,
	is_managed_subdomain,
	is_valid_domain,
	normalize_domain,
	parent_domain_for,
	subdomain_prefix,
)
from .errors import (
	CertificateNotFoundError,
	InvalidStateError,
	NotConfiguredError,
	RequestRejectedError,
	SSLError,
)
from .issuance import CertificateIssuer, IssueResult
from .resolver import DNSVerifier
from .settings import SSLIssuanceConfig, load_issuance_config

_log = logging.getLogger(__name__)

DNS_MISS_MESSAGE = "DNS record not found or incorrect"
AUTO_RETRY_MESSAGE = "DNS not yet propagated. Auto-retry in progress."
AUTO_GAVE_UP_MESSAGE = "DNS propagation taking longer than expected. Please wait and try manual verification."
AUTO_ISSUE_INSTRUCTIONS = "SSL certificate is being issued automatically. This may take 1-2 minutes."

_VERIFIABLE = (CertificateStatus.PENDING_VERIFICATION.value, CertificateStatus.VERIFYING.value)
_UNDELETABLE = (CertificateStatus.ISSUING.value, CertificateStatus.ISSUED.value)


class SSLService:
	"""Certificate workflow bound to one database connection.

	Settings are read once per call unless a fixed ``config`` is given.
	The remaining keyword arguments replace collaborators and are passed on
	to the :class:`CertificateIssuer` used for issuance.
	"""

	def __init__(
		self,
		conn: sqlite3.Connection,
		*,
		config: Optional[SSLIssuanceConfig] = None,
		dns_provider: Optional[Any] = None,
		verifier: Optional[Any] = None,
		issuer: Optional[CertificateIssuer] = None,
		acme_factory: Optional[Callable[[str], Any]] = None,
		eab_factory: Optional[Callable[[str], Any]] = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
		now: Callable[[], datetime] = utcnow,
	):
		self.conn = conn
		self._config = config
		self._dns_provider = dns_provider
		self._verifier = verifier or DNSVerifier()
		self._issuer = issuer
		self._acme_factory = acme_factory
		self._eab_factory = eab_factory
		self._sleep = sleep
		self._now = now

	def config(self) -> SSLIssuanceConfig:
		return self._config or load_issuance_config(self.conn)

	def _dns(self, config: SSLIssuanceConfig):
		if self._dns_provider is None:
			self._dns_provider = CloudflareDNS(config.cloudflare_api_token)
		return self._dns_provider

	def _issuer_for(self) -> CertificateIssuer:
		if self._issuer is None:
			self._issuer = CertificateIssuer(
				self.conn,
				config=self._config,
				dns_provider=self._dns_provider,
				verifier=self._verifier,
				eab_factory=self._eab_factory,
				acme_factory=self._acme_factory,
				sleep=self._sleep,
				now=self._now,
			)
		return self._issuer

	def get(self, cert_id: str, user_id: Optional[int] = None) -> sqlite3.Row:
		"""Load a certificate; with ``user_id`` only the owner may see it."""
		cert = get_certificate(self.conn, cert_id)
		if cert is None or (user_id is not None and cert["user_id"] != user_id):
			raise CertificateNotFoundError("Certificate not found")
		return cert

	# ------------------------------------------------------------------
	# Request
	# ------------------------------------------------------------------

	def request_certificate(
		self,
		user_id: int,
		domain: str,
		provider: str = Provider.LETS_ENCRYPT.value,
	) -> sqlite3.Row:
		"""Create a PENDING_VERIFICATION certificate for one of the user's hostings."""
		if not domain or not domain.strip():
			raise RequestRejectedError("Domain is required", "DOMAIN_REQUIRED")
		if provider not in {p.value for p in Provider}:
			raise RequestRejectedError("Invalid provider", "INVALID_PROVIDER")
		domain = normalize_domain(domain)
		if not is_valid_domain(domain):
			raise RequestRejectedError(f"Invalid domain: {domain}", "INVALID_DOMAIN")

		config = self.config()
		parent = parent_domain_for(domain, config.service_domains)
		if parent and is_managed_subdomain(domain, config.service_domains):
			domain_type = DomainType.SUBDOMAIN
			hosting = find_hosting_for_subdomain(self.conn, user_id, domain, subdomain_prefix(domain, parent))
			if hosting is None:
				raise RequestRejectedError(
					"This domain requires a hosting account. Please create a hosting account first.",
					"HOSTING_REQUIRED",
				)
			if hosting["status"] != HOSTING_ACTIVE:
				raise RequestRejectedError(
					"Your hosting account is not active. Please wait for activation or contact support.",
					"HOSTING_NOT_ACTIVE",
				)
		else:
			domain_type = DomainType.CUSTOM
			hosting = find_hosting_for_custom_domain(self.conn, user_id, domain)
			if hosting is None:
				raise RequestRejectedError(
					"You need at least one active hosting account to request SSL for a custom domain.",
					"NO_ACTIVE_HOSTING",
				)

		if find_open_certificate(self.conn, domain) is not None:
			raise RequestRejectedError("Certificate already exists for this domain", "CERTIFICATE_EXISTS")

		cert_id = create_certificate(
			self.conn,
			hosting_id=hosting["id"],
			domain=domain,
			domain_type=domain_type,
			provider=provider,
			status=CertificateStatus.PENDING_VERIFICATION,
			verification_token=new_verification_token(),
		)
		_log.info("SSL_REQUEST %s created for %s (%s, %s)", cert_id, domain, domain_type.value, provider)
		return self.get(cert_id)

	# ------------------------------------------------------------------
	# Domain ownership
	# ------------------------------------------------------------------

	async def start_verification(self, cert_id: str) -> dict[str, Any]:
		"""Put the challenge record in place.

		SUBDOMAIN certificates get the TXT on the intermediate domain and a
		CNAME delegating ``_acme-challenge.<domain>`` to it, and move to
		VERIFYING. CUSTOM certificates only get instructions for the user.
		"""
		cert = self.get(cert_id)
		if cert["status"] != CertificateStatus.PENDING_VERIFICATION.value:
			raise InvalidStateError("Certificate is not pending verification")
		token = cert["verification_token"] or new_verification_token()

		if cert["domain_type"] != DomainType.SUBDOMAIN.value:
			update_certificate(self.conn, cert_id, txt_record=token)
			return {
				"status": CertificateStatus.PENDING_VERIFICATION.value,
				"auto_verified": False,
				"txt_record": token,
				"instructions": f"Add TXT record: {challenge_name(cert['domain'])} → {token}",
			}

		config = self.config()
		if not config.intermediate_domain:
			raise NotConfiguredError("INTERMEDIATE_DOMAIN not configured")
		parent = parent_domain_for(cert["domain"], config.service_domains)
		if not parent:
			raise NotConfiguredError("Service domain not found")
		txt_name = delegated_challenge_name(subdomain_prefix(cert["domain"], parent), config.intermediate_domain)
		dns = self._dns(config)

		if cert["dns_record_id"]:
			await self._delete_quietly(dns, cert["dns_record_id"], cert_id, "stale TXT")

		record_ref = await dns.create_record("TXT", txt_name, token)
		try:
			cname_name = challenge_name(cert["domain"])
			if await dns.get_record(cname_name, "CNAME") is None:
				await dns.create_record("CNAME", cname_name, txt_name)
			else:
				_log.info("SSL_VERIFY CNAME %s already exists, keeping it", cname_name)
		except Exception:
			await self._delete_quietly(dns, record_ref, cert_id, "TXT after CNAME failure")
			raise

		if not update_certificate(
			self.conn,
			cert_id,
			expected_status=CertificateStatus.PENDING_VERIFICATION,
			status=CertificateStatus.VERIFYING,
			txt_record=token,
			cname_record=txt_name,
			dns_record_id=record_ref,
			last_error=None,
		):
			await self._delete_quietly(dns, record_ref, cert_id, "TXT after lost update")
			raise InvalidStateError("Certificate is not pending verification")

		_log.info("SSL_VERIFY %s delegated %s -> %s", cert_id, challenge_name(cert["domain"]), txt_name)
		return {
			"status": CertificateStatus.VERIFYING.value,
			"auto_verified": True,
			"txt_record": token,
			"cname_record": txt_name,
			"instructions": AUTO_ISSUE_INSTRUCTIONS,
		}

	async def verify_domain(self, cert_id: str) -> bool:
		"""Check the challenge record; VERIFIED on a hit, status unchanged on a miss."""
		cert = self.get(cert_id)
		if cert["status"] not in _VERIFIABLE:
			raise InvalidStateError("Certificate is not pending verification")

		expected = cert["txt_record"] or cert["verification_token"]
		delegated = cert["domain_type"] == DomainType.SUBDOMAIN.value
		verified = await self._verifier.verify_txt(
			cert["domain"],
			expected,
			cert["cname_record"] if delegated else None,
		)
		if not verified:
			update_certificate(self.conn, cert_id, expected_status=cert["status"], last_error=DNS_MISS_MESSAGE)
			_log.info("SSL_VERIFY %s not visible yet for %s", cert_id, cert["domain"])
			return False

		if not update_certificate(
			self.conn,
			cert_id,
			expected_status=cert["status"],
			status=CertificateStatus.VERIFIED,
			verified_at=self._now(),
			last_error=None,
		):
			raise InvalidStateError("Certificate status changed during verification")
		_log.info("SSL_VERIFY %s verified %s", cert_id, cert["domain"])
		return True

	async def verify_cname(self, domain: str, expected_target: str) -> bool:
		return await self._verifier.verify_cname(domain, expected_target)

	# ------------------------------------------------------------------
	# Issuance
	# ------------------------------------------------------------------

	async def issue_certificate(self, cert_id: str) -> IssueResult:
		return await self._issuer_for().issue(cert_id)

	def retry_issuance(self, cert_id: str, reenter: str = CertificateStatus.PENDING_VERIFICATION.value) -> sqlite3.Row:
		"""FAILED -> VERIFIED or PENDING_VERIFICATION with lastError cleared."""
		reenter = getattr(reenter, "value", reenter)
		if reenter not in RETRY_ENTRY_STATUSES:
			raise InvalidStateError(f"Cannot retry into status {reenter}")
		cert = self.get(cert_id)
		if cert["status"] != CertificateStatus.FAILED.value or not reset_for_retry(self.conn, cert_id, reenter):
			raise InvalidStateError("Only failed certificates can be retried")
		_log.info("SSL_RETRY %s re-entered at %s", cert_id, reenter)
		return self.get(cert_id)

	async def auto_issue(self, cert_id: str) -> IssueResult:
		"""Background flow for delegated certificates: wait, verify (twice at most), issue."""
		delay = self.config().propagation_delay
		try:
			_log.info("SSL_AUTO %s waiting %.0fs for DNS propagation", cert_id, delay)
			await self._sleep(delay)
			if not await self.verify_domain(cert_id):
				update_certificate(self.conn, cert_id, last_error=AUTO_RETRY_MESSAGE)
				await self._sleep(delay)
				if not await self.verify_domain(cert_id):
					update_certificate(self.conn, cert_id, last_error=AUTO_GAVE_UP_MESSAGE)
					_log.info("SSL_AUTO %s DNS still not visible, leaving for manual verification", cert_id)
					return IssueResult(success=False, error=AUTO_GAVE_UP_MESSAGE)
		except SSLError as exc:
			_log.warning("SSL_AUTO %s stopped: %s", cert_id, exc)
			return IssueResult(success=False, error=str(exc))

		result = await self.issue_certificate(cert_id)
		if result.success:
			_log.info("SSL_AUTO %s certificate issued", cert_id)
		else:
			_log.warning("SSL_AUTO %s issuance failed: %s", cert_id, result.error)
		return result

	# ------------------------------------------------------------------
	# Delete
	# ------------------------------------------------------------------

	async def delete_certificate(self, cert_id: str) -> None:
		"""Delete a certificate that is not ISSUING/ISSUED, cleaning up its DNS records."""
		cert = self.get(cert_id)
		if cert["status"] in _UNDELETABLE:
			raise InvalidStateError("Cannot delete an active certificate")

		if cert["domain_type"] == DomainType.SUBDOMAIN.value and (cert["cname_record"] or cert["dns_record_id"]):
			dns = self._dns(self.config())
			if cert["cname_record"]:
				try:
					cname_ref = await dns.get_record(challenge_name(cert["domain"]), "CNAME")
				except Exception as exc:
					_log.warning("SSL_DELETE %s CNAME lookup failed: %s", cert_id, exc)
					cname_ref = None
				if cname_ref:
					await self._delete_quietly(dns, cname_ref, cert_id, "CNAME")
			if cert["dns_record_id"]:
				await self._delete_quietly(dns, cert["dns_record_id"], cert_id, "TXT")

		db_delete_certificate(self.conn, cert_id)
		_log.info("SSL_DELETE %s removed (%s)", cert_id, cert["domain"])

	@staticmethod
	async def _delete_quietly(dns: Any, record_ref: str, cert_id: str, what: str) -> None:
		try:
			await dns.delete_record(record_ref)
		except Exception as exc:
			_log.warning("SSL_DNS %s failed to delete %s record %s: %s", cert_id, what, record_ref, exc)
