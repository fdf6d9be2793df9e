#!/usr/bin/env python3
#
# hostssl/models/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SSL certificate Pydantic models."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

HIDDEN = "***HIDDEN***"


class CertificateRequest(BaseModel):
	"""Request a certificate for a domain."""
	domain: str = Field(..., min_length=1, max_length=253)
	# Checked by the workflow so an unknown provider reads "Invalid provider"
	provider: str = Field(default="LETS_ENCRYPT", max_length=32)

	@field_validator("domain")
	@classmethod
	def normalize_domain(cls, v: str) -> str:
		return v.strip().lower().rstrip(".")


class RetryRequest(BaseModel):
	"""Admin retry of a failed certificate."""
	reenter: Literal["PENDING_VERIFICATION", "VERIFIED"] = "PENDING_VERIFICATION"


class SSLConfigUpdate(BaseModel):
	key: str = Field(..., min_length=1, max_length=64)
	value: str = Field(..., max_length=20000)
	description: Optional[str] = Field(default=None, max_length=255)


class HostingRef(BaseModel):
	id: int
	domain: Optional[str] = None
	username: Optional[str] = None


class CertificateSummary(BaseModel):
	"""List view; never carries PEM material."""
	id: str
	domain: str
	domain_type: str
	provider: str
	status: str
	issued_at: Optional[datetime] = None
	expires_at: Optional[datetime] = None
	created_at: Optional[datetime] = None
	hosting: HostingRef

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "CertificateSummary":
		data = dict(row)
		data["hosting"] = HostingRef(
			id=row["hosting_id"],
			domain=data.get("hosting_domain"),
			username=data.get("hosting_username"),
		)
		return cls.model_validate(data)


class CertificateDetail(CertificateSummary):
	"""Single certificate view for its owner.

	PEM fields are filled only once the certificate is ISSUED; the private
	key itself is served by the download endpoint alone.
	"""
	txt_record: Optional[str] = None
	cname_record: Optional[str] = None
	verified_at: Optional[datetime] = None
	last_error: Optional[str] = None
	retry_count: int = 0
	certificate: Optional[str] = None
	private_key: Optional[str] = None
	ca_certificate: Optional[str] = None

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "CertificateDetail":
		detail = super().from_row(row)
		if row["status"] == "ISSUED":
			detail.private_key = HIDDEN
		else:
			detail.certificate = None
			detail.private_key = None
			detail.ca_certificate = None
		return detail


class AdminCertificate(CertificateDetail):
	"""Admin view; adds the owner and always hides the private key."""
	user_id: Optional[int] = None
	user_email: Optional[str] = None
	user_name: Optional[str] = None

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "AdminCertificate":
		detail = super().from_row(row)
		if row["private_key"]:
			detail.private_key = HIDDEN
		return detail


class CertificateDownload(BaseModel):
	"""Full PEM bundle for the owner of an ISSUED certificate."""
	id: str
	domain: str
	provider: str
	certificate: str
	private_key: str
	ca_certificate: Optional[str] = None
	issued_at: Optional[datetime] = None
	expires_at: Optional[datetime] = None

	@classmethod
	def from_row(cls, row: sqlite3.Row) -> "CertificateDownload":
		return cls.model_validate(dict(row))


def to_json(model: BaseModel) -> dict[str, Any]:
	return model.model_dump(mode="json")
