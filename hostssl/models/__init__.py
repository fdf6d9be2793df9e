#!/usr/bin/env python3
#
# hostssl/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic models for hostssl."""

from .certificates import (
	AdminCertificate,
	CertificateDetail,
	CertificateDownload,
	CertificateRequest,
	CertificateSummary,
	RetryRequest,
	SSLConfigUpdate,
)

__all__ = [
	"AdminCertificate",
	"CertificateDetail",
	"CertificateDownload",
	"CertificateRequest",
	"CertificateSummary",
	"RetryRequest",
	"SSLConfigUpdate",
]
