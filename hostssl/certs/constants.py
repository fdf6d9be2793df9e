#!/usr/bin/env python3
#
# hostssl/certs/constants.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate states, providers and ACME directory endpoints."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum


class CertificateStatus(str, Enum):
	PENDING_VERIFICATION = "PENDING_VERIFICATION"
	VERIFYING = "VERIFYING"
	VERIFIED = "VERIFIED"
	ISSUING = "ISSUING"
	ISSUED = "ISSUED"
	FAILED = "FAILED"
	EXPIRED = "EXPIRED"
	REVOKED = "REVOKED"


class DomainType(str, Enum):
	SUBDOMAIN = "SUBDOMAIN"
	CUSTOM = "CUSTOM"


class Provider(str, Enum):
	LETS_ENCRYPT = "LETS_ENCRYPT"
	GOOGLE_TRUST = "GOOGLE_TRUST"


# Allowed re-entry points for a failed certificate
RETRY_ENTRY_STATUSES = frozenset({
	CertificateStatus.VERIFIED.value,
	CertificateStatus.PENDING_VERIFICATION.value,
})

ACME_DIRECTORIES = {
	(Provider.LETS_ENCRYPT, False): "https://acme-v02.api.letsencrypt.org/directory",
	(Provider.LETS_ENCRYPT, True): "https://acme-staging-v02.api.letsencrypt.org/directory",
	(Provider.GOOGLE_TRUST, False): "https://dv.acme-v02.api.pki.goog/directory",
	(Provider.GOOGLE_TRUST, True): "https://dv.acme-v02.test-api.pki.goog/directory",
}

# Validity window used for expiresAt; renewal scheduling keys off this
CERTIFICATE_VALIDITY = timedelta(days=90)

ACME_CHALLENGE_LABEL = "_acme-challenge"
DEFAULT_PROPAGATION_DELAY = 30.0

# Outbound API timeout (Cloudflare, Google OAuth, Public CA)
HTTP_TIMEOUT_SECONDS = 10.0
