#!/usr/bin/env python3
#
# hostssl/certs/resolver.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS visibility checks for ACME challenge records.

Lookups always go to explicit public resolvers rather than the host's
stub resolver so that stale local caches never make a record look
present. Every lookup failure means "not yet visible" and is answered with
False; propagation delay is expected and the caller polls.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional

import dns.asyncresolver
import dns.exception

from .domains import challenge_name

_log = logging.getLogger(__name__)

PUBLIC_RESOLVERS = ("8.8.8.8", "1.1.1.1")
DNS_LOOKUP_LIFETIME = 10.0


def _strip_root(name: str) -> str:
	return name.rstrip(".")


def _short(value: str) -> str:
	return value[:20] + "..." if len(value) > 20 else value


class DNSVerifier:
	"""Answers "is the challenge record visible right now?"."""

	def __init__(
		self,
		nameservers: Sequence[str] = PUBLIC_RESOLVERS,
		*,
		lifetime: float = DNS_LOOKUP_LIFETIME,
		resolver: Optional[Any] = None,
	):
		if resolver is None:
			resolver = dns.asyncresolver.Resolver(configure=False)
			resolver.nameservers = list(nameservers)
			resolver.lifetime = lifetime
		self._resolver = resolver

	async def _txt_values(self, name: str) -> list[str]:
		answer = await self._resolver.resolve(name, "TXT")
		values = []
		for rdata in answer:
			# A TXT record may be split into several character-strings
			values.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
		return values

	async def _cname_target(self, name: str) -> Optional[str]:
		answer = await self._resolver.resolve(name, "CNAME")
		for rdata in answer:
			return _strip_root(str(rdata.target))
		return None

	async def verify_txt(
		self,
		domain: str,
		expected_value: str,
		cname_target: Optional[str] = None,
	) -> bool:
		"""True iff ``expected_value`` is visible for ``_acme-challenge.<domain>``.

		Without ``cname_target`` the TXT set at the challenge name is checked
		directly. With it (delegated validation) the CNAME at the challenge
		name must resolve and the TXT must be found at the CNAME's target.
		"""
		acme_name = challenge_name(domain)
		_log.debug("DNS_VERIFY checking %s for %s", acme_name, _short(expected_value))
		try:
			if cname_target:
				return await self._verify_delegated(acme_name, expected_value, cname_target)
			values = await self._txt_values(acme_name)
			_log.debug("DNS_VERIFY direct TXT on %s: %s", acme_name, values)
			return expected_value in values
		except (dns.exception.DNSException, OSError) as exc:
			_log.info("DNS_VERIFY %s not visible yet: %s", acme_name, exc.__class__.__name__)
			return False
		except Exception:
			_log.exception("DNS_VERIFY unexpected resolver failure for %s", acme_name)
			return False

	async def _verify_delegated(self, acme_name: str, expected_value: str, cname_target: str) -> bool:
		try:
			target = await self._cname_target(acme_name)
		except (dns.exception.DNSException, OSError) as exc:
			_log.info("DNS_VERIFY CNAME not yet propagated for %s: %s", acme_name, exc.__class__.__name__)
			target = None

		if target:
			_log.debug("DNS_VERIFY CNAME %s -> %s", acme_name, target)
			try:
				values = await self._txt_values(target)
			except (dns.exception.DNSException, OSError) as exc:
				_log.info("DNS_VERIFY no TXT on CNAME target %s: %s", target, exc.__class__.__name__)
				return False
			return expected_value in values

		# The TXT on the intermediate domain alone is not enough: the CA
		# resolves the full chain, so the CNAME must be live as well.
		try:
			values = await self._txt_values(_strip_root(cname_target))
		except (dns.exception.DNSException, OSError):
			return False
		if expected_value in values:
			_log.info(
				"DNS_VERIFY TXT present on %s but CNAME %s not yet propagated",
				cname_target,
				acme_name,
			)
		return False

	async def verify_cname(self, domain: str, expected_target: str) -> bool:
		"""True iff ``_acme-challenge.<domain>`` is a CNAME to ``expected_target``."""
		acme_name = challenge_name(domain)
		expected = _strip_root(expected_target).lower()
		try:
			answer = await self._resolver.resolve(acme_name, "CNAME")
			return any(_strip_root(str(rdata.target)).lower() == expected for rdata in answer)
		except (dns.exception.DNSException, OSError) as exc:
			_log.info("DNS_VERIFY CNAME check for %s failed: %s", acme_name, exc.__class__.__name__)
			return False
		except Exception:
			_log.exception("DNS_VERIFY unexpected resolver failure for %s", acme_name)
			return False
