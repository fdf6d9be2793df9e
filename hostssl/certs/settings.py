#!/usr/bin/env python3
#
# hostssl/certs/settings.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SSL settings: the per-attempt issuance config and admin-side masking."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass

from ..db.sqlite_settings import get_all_ssl_configs, get_setting
from .constants import ACME_DIRECTORIES, DEFAULT_PROPAGATION_DELAY, Provider
from .domains import service_domains_from_setting

_log = logging.getLogger(__name__)

ACME_EMAIL = "ACME_EMAIL"
USE_STAGING = "USE_STAGING"
INTERMEDIATE_DOMAIN = "INTERMEDIATE_DOMAIN"
GOOGLE_EAB_KEY_ID = "GOOGLE_EAB_KEY_ID"
GOOGLE_EAB_HMAC_KEY = "GOOGLE_EAB_HMAC_KEY"
GOOGLE_SERVICE_ACCOUNT_JSON = "GOOGLE_SERVICE_ACCOUNT_JSON"
CLOUDFLARE_API_TOKEN = "CLOUDFLARE_API_TOKEN"
DNS_PROPAGATION_DELAY = "DNS_PROPAGATION_DELAY"

ALLOWED_DOMAINS_SETTING = "allowed_domains"

SSL_CONFIG_KEYS = (
	CLOUDFLARE_API_TOKEN,
	INTERMEDIATE_DOMAIN,
	ACME_EMAIL,
	USE_STAGING,
	GOOGLE_SERVICE_ACCOUNT_JSON,
	GOOGLE_EAB_KEY_ID,
	GOOGLE_EAB_HMAC_KEY,
	DNS_PROPAGATION_DELAY,
)

SENSITIVE_KEYS = frozenset({
	CLOUDFLARE_API_TOKEN,
	GOOGLE_EAB_HMAC_KEY,
	GOOGLE_SERVICE_ACCOUNT_JSON,
})

_MASK_PREFIX = "***"
_MIN_CLOUDFLARE_TOKEN_LENGTH = 20
_SERVICE_ACCOUNT_REQUIRED = ("project_id", "private_key", "client_email")


@dataclass(frozen=True)
class SSLIssuanceConfig:
	"""Settings snapshot taken once at the start of an issuance attempt."""
	acme_email: str | None = None
	use_staging: bool = False
	intermediate_domain: str | None = None
	eab_key_id: str | None = None
	eab_hmac_key: str | None = None
	service_account_json: str | None = None
	cloudflare_api_token: str | None = None
	service_domains: tuple[str, ...] = ()
	propagation_delay: float = DEFAULT_PROPAGATION_DELAY

	def directory_url(self, provider: str) -> str:
		"""ACME directory for the provider; unknown providers use Let's Encrypt."""
		try:
			key = Provider(provider)
		except ValueError:
			key = Provider.LETS_ENCRYPT
		return ACME_DIRECTORIES[(key, self.use_staging)]


def _parse_delay(raw: str | None) -> float:
	if raw is None:
		return DEFAULT_PROPAGATION_DELAY
	try:
		return max(0.0, float(raw))
	except ValueError:
		_log.warning("Invalid %s=%r, using %.0fs", DNS_PROPAGATION_DELAY, raw, DEFAULT_PROPAGATION_DELAY)
		return DEFAULT_PROPAGATION_DELAY


def load_service_domains(conn: sqlite3.Connection) -> list[str]:
	"""Enabled service parent domains from the panel settings."""
	return service_domains_from_setting(get_setting(conn, ALLOWED_DOMAINS_SETTING))


def load_issuance_config(conn: sqlite3.Connection) -> SSLIssuanceConfig:
	"""Read every SSL setting once and return an immutable snapshot."""
	values = {key: value for key, value in get_all_ssl_configs(conn).items() if value != ""}
	return SSLIssuanceConfig(
		acme_email=values.get(ACME_EMAIL),
		use_staging=values.get(USE_STAGING, "").strip().lower() == "true",
		intermediate_domain=values.get(INTERMEDIATE_DOMAIN),
		eab_key_id=values.get(GOOGLE_EAB_KEY_ID),
		eab_hmac_key=values.get(GOOGLE_EAB_HMAC_KEY),
		service_account_json=values.get(GOOGLE_SERVICE_ACCOUNT_JSON),
		cloudflare_api_token=values.get(CLOUDFLARE_API_TOKEN),
		service_domains=tuple(load_service_domains(conn)),
		propagation_delay=_parse_delay(values.get(DNS_PROPAGATION_DELAY)),
	)


# ---------------------------------------------------------------------------
# Admin view helpers
# ---------------------------------------------------------------------------

def mask_ssl_configs(configs: dict[str, str]) -> dict[str, str]:
	"""Hide secret values: last four characters for tokens, the account e-mail for JSON."""
	masked = dict(configs)
	for key in SENSITIVE_KEYS:
		value = masked.get(key)
		if not value or len(value) <= 4:
			continue
		if key == GOOGLE_SERVICE_ACCOUNT_JSON:
			try:
				email = json.loads(value).get("client_email") or "unknown email"
				masked[key] = f"{_MASK_PREFIX}configured{_MASK_PREFIX} ({email})"
			except (ValueError, AttributeError):
				masked[key] = f"{_MASK_PREFIX}configured{_MASK_PREFIX}"
		else:
			masked[key] = _MASK_PREFIX + value[-4:]
	return masked


def is_masked_value(key: str, value: str) -> bool:
	"""True if a submitted secret is the masked echo (or empty) and must not be saved."""
	return key in SENSITIVE_KEYS and (value == "" or value.startswith(_MASK_PREFIX))


def bulk_value_rejection(key: str, value: str) -> str | None:
	"""Reason a bulk-submitted value is skipped, or None if it may be stored."""
	if key not in SSL_CONFIG_KEYS:
		return "unknown key"
	if is_masked_value(key, value):
		return "masked value"
	if key == CLOUDFLARE_API_TOKEN and len(value) < _MIN_CLOUDFLARE_TOKEN_LENGTH:
		return "token too short"
	if key == GOOGLE_SERVICE_ACCOUNT_JSON:
		try:
			parsed = json.loads(value)
		except ValueError:
			return "invalid JSON"
		if not isinstance(parsed, dict) or not all(parsed.get(f) for f in _SERVICE_ACCOUNT_REQUIRED):
			return "missing required fields"
	return None
