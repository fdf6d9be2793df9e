#!/usr/bin/env python3
#
# hostssl/certs/domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Domain classification: service subdomains versus customer domains.

A subdomain of an enabled service parent domain gets fully automated
validation through the intermediate domain; any other name is a custom
domain whose owner places the TXT record by hand. All comparisons are
case-insensitive.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from typing import Optional

from .constants import ACME_CHALLENGE_LABEL

_log = logging.getLogger(__name__)

# RFC 1123 hostname labels
_DOMAIN_RE = re.compile(
	r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?)+$"
)


def normalize_domain(domain: str) -> str:
	"""Lowercase, strip whitespace and a trailing root dot."""
	return domain.strip().rstrip(".").lower()


def is_valid_domain(domain: str) -> bool:
	"""True for a syntactically valid multi-label hostname."""
	value = normalize_domain(domain)
	return len(value) <= 253 and bool(_DOMAIN_RE.match(value))


def service_domains_from_setting(raw: Optional[str]) -> list[str]:
	"""Parse the ``allowed_domains`` setting into enabled, lowercased names.

	The setting is a JSON list of ``{"domain": ..., "enabled": ...}``
	objects. Anything unparseable yields an empty list.
	"""
	if not raw:
		return []
	try:
		entries = json.loads(raw)
	except ValueError:
		_log.warning("allowed_domains setting is not valid JSON, ignoring")
		return []
	if not isinstance(entries, list):
		return []
	domains: list[str] = []
	for entry in entries:
		if not isinstance(entry, dict) or not entry.get("enabled"):
			continue
		name = entry.get("domain")
		if isinstance(name, str) and name.strip():
			domains.append(normalize_domain(name))
	return domains


def is_managed_subdomain(domain: str, parent_domains: Iterable[str]) -> bool:
	"""True if ``domain`` equals or ends with ``.`` + an enabled parent domain."""
	value = normalize_domain(domain)
	for parent in parent_domains:
		parent = normalize_domain(parent)
		if parent and (value == parent or value.endswith(f".{parent}")):
			return True
	return False


def parent_domain_for(domain: str, parent_domains: Iterable[str]) -> Optional[str]:
	"""Return the longest parent domain that ``domain`` is a strict subdomain of."""
	value = normalize_domain(domain)
	matches = [
		normalize_domain(parent)
		for parent in parent_domains
		if parent and value.endswith(f".{normalize_domain(parent)}")
	]
	if not matches:
		return None
	return max(matches, key=len)


def subdomain_prefix(domain: str, parent: str) -> str:
	"""Label portion of ``domain`` before ``.<parent>``.

	Returns ``domain`` unchanged when it does not end with ``.<parent>``.
	"""
	value = normalize_domain(domain)
	suffix = f".{normalize_domain(parent)}"
	if value.endswith(suffix):
		return value[: -len(suffix)]
	return domain


def challenge_name(domain: str) -> str:
	"""``_acme-challenge.<domain>``"""
	return f"{ACME_CHALLENGE_LABEL}.{normalize_domain(domain)}"


def delegated_challenge_name(prefix: str, intermediate_domain: str) -> str:
	"""TXT host on the intermediate domain: ``_acme-challenge.<prefix>.<intermediate>``."""
	return f"{ACME_CHALLENGE_LABEL}.{prefix.lower()}.{normalize_domain(intermediate_domain)}"
