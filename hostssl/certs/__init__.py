#!/usr/bin/env python3
#
# hostssl/certs/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SSL certificate issuance: ACME dns-01 with CNAME delegation."""

from .constants import CertificateStatus, DomainType, Provider
from .errors import SSLError
from .issuance import CertificateIssuer, IssueResult
from .workflow import SSLService

__all__ = [
	"CertificateIssuer",
	"CertificateStatus",
	"DomainType",
	"IssueResult",
	"Provider",
	"SSLError",
	"SSLService",
]
