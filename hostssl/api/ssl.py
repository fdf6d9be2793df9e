#!/usr/bin/env python3
#
# hostssl/api/ssl.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SSL certificate API routes (user and admin)."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, Request

from ..certs.cloudflare import CloudflareDNS
from ..certs.constants import CertificateStatus
from ..certs.errors import SSLError
from ..certs.google_eab import GoogleEABProvider
from ..certs.settings import (
	SSL_CONFIG_KEYS,
	bulk_value_rejection,
	is_masked_value,
	mask_ssl_configs,
)
from ..certs.workflow import SSLService
from ..db.sqlite_certificates import get_issue_logs, list_certificates, list_user_certificates
from ..db.sqlite_runtime import close_connection, connect
from ..db.sqlite_settings import get_all_ssl_configs, get_ssl_config, set_ssl_config
from ..models.certificates import (
	AdminCertificate,
	CertificateDetail,
	CertificateDownload,
	CertificateRequest,
	CertificateSummary,
	RetryRequest,
	SSLConfigUpdate,
	to_json,
)
from ..utils.deps import get_conn, get_db_path
from ..utils.rate_limit import (
	RATE_LIMIT_DEFAULT,
	RATE_LIMIT_ISSUE,
	RATE_LIMIT_REQUEST,
	RATE_LIMIT_VERIFY,
	limiter,
)
from ..utils.time import isoformat_utc
from .auth import get_current_user, require_admin
from .response import http_error, ok_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["ssl"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _collaborators(request: Request) -> dict[str, Any]:
	"""Collaborator overrides configured on the app (empty in production)."""
	return dict(getattr(request.app.state, "ssl_collaborators", {}) or {})


def _service(request: Request, conn: sqlite3.Connection) -> SSLService:
	return SSLService(conn, **_collaborators(request))


def _owned(service: SSLService, cert_id: str, user: sqlite3.Row) -> sqlite3.Row:
	try:
		return service.get(cert_id, user["id"])
	except SSLError as exc:
		raise http_error(exc) from exc


async def _issue_in_background(
	db_path: Path,
	collaborators: dict[str, Any],
	cert_id: str,
	auto: bool,
) -> None:
	"""Run issuance on its own connection; the request's one is closed by now."""
	conn = connect(db_path)
	try:
		service = SSLService(conn, **collaborators)
		if auto:
			result = await service.auto_issue(cert_id)
		else:
			result = await service.issue_certificate(cert_id)
		if not result.success:
			_log.warning("SSL_BACKGROUND %s finished without certificate: %s", cert_id, result.error)
	except Exception:
		_log.exception("SSL_BACKGROUND %s crashed", cert_id)
	finally:
		close_connection(conn)


# ---------------------------------------------------------------------------
# User routes
# ---------------------------------------------------------------------------

@router.get("/certificates")
def list_my_certificates(
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""List the current user's certificates (no PEM material)."""
	rows = list_user_certificates(conn, user["id"])
	return ok_response(data=[to_json(CertificateSummary.from_row(row)) for row in rows])


@router.get("/certificate/{cert_id}")
def get_my_certificate(
	request: Request,
	cert_id: str,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	cert = _owned(_service(request, conn), cert_id, user)
	return ok_response(data=to_json(CertificateDetail.from_row(cert)))


@router.get("/certificate/{cert_id}/download")
def download_certificate(
	request: Request,
	cert_id: str,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Full PEM bundle including the private key; owner only, ISSUED only."""
	cert = _owned(_service(request, conn), cert_id, user)
	if cert["status"] != CertificateStatus.ISSUED.value:
		raise HTTPException(status_code=400, detail="Certificate not yet issued")
	return ok_response(data=to_json(CertificateDownload.from_row(cert)))


@router.post("/request")
@limiter.limit(RATE_LIMIT_REQUEST)
async def request_certificate(
	request: Request,
	payload: CertificateRequest,
	background_tasks: BackgroundTasks,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
	db_path: Path = Depends(get_db_path),
) -> dict:
	"""Request a certificate and put the challenge record in place.

	Delegated (service subdomain) certificates continue automatically in the
	background; custom domains return the TXT record the user has to add.
	"""
	service = _service(request, conn)
	try:
		cert = service.request_certificate(user["id"], payload.domain, payload.provider)
	except SSLError as exc:
		raise http_error(exc) from exc

	try:
		started = await service.start_verification(cert["id"])
	except Exception as exc:
		_log.warning("SSL_REQUEST %s could not set up DNS: %s", cert["id"], exc)
		await service.delete_certificate(cert["id"])
		if isinstance(exc, SSLError):
			raise http_error(exc) from exc
		raise HTTPException(status_code=500, detail="Failed to set up DNS records") from exc

	if started["auto_verified"]:
		background_tasks.add_task(_issue_in_background, db_path, _collaborators(request), cert["id"], True)

	cert = service.get(cert["id"])
	return ok_response(
		message=started["instructions"],
		data={
			**to_json(CertificateSummary.from_row(cert)),
			"txt_record": cert["txt_record"],
			"cname_record": cert["cname_record"],
			"auto_verified": started["auto_verified"],
		},
		instructions=started["instructions"],
	)


@router.post("/verify/{cert_id}")
@limiter.limit(RATE_LIMIT_VERIFY)
async def verify_certificate(
	request: Request,
	cert_id: str,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	service = _service(request, conn)
	cert = _owned(service, cert_id, user)
	try:
		verified = await service.verify_domain(cert_id)
	except SSLError as exc:
		raise http_error(exc) from exc

	if not verified:
		if cert["domain_type"] == "SUBDOMAIN":
			message = "DNS record not yet propagated. Please wait a moment and try again."
		else:
			message = (
				"DNS record not found. Please make sure you have added the correct record "
				"and wait for DNS propagation (can take up to 48 hours)."
			)
		raise HTTPException(status_code=400, detail={"error": "DNS verification failed", "message": message})

	return ok_response(
		message="DNS verified successfully. Certificate issuance can begin.",
		data={"certificate_status": CertificateStatus.VERIFIED.value},
	)


@router.post("/issue/{cert_id}")
@limiter.limit(RATE_LIMIT_ISSUE)
def issue_certificate(
	request: Request,
	cert_id: str,
	background_tasks: BackgroundTasks,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
	db_path: Path = Depends(get_db_path),
) -> dict:
	"""Start issuance in the background; progress is readable via /logs/{id}."""
	cert = _owned(_service(request, conn), cert_id, user)
	if cert["status"] != CertificateStatus.VERIFIED.value:
		raise HTTPException(status_code=400, detail="Certificate must be verified first")
	background_tasks.add_task(_issue_in_background, db_path, _collaborators(request), cert_id, False)
	return ok_response(message="Certificate issuance started. Check logs for progress.")


@router.get("/logs/{cert_id}")
def get_logs(
	request: Request,
	cert_id: str,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	cert = _owned(_service(request, conn), cert_id, user)
	lines = [f"[{isoformat_utc(row['created_at'])}] {row['message']}" for row in get_issue_logs(conn, cert_id)]
	return ok_response(
		data={
			"logs": lines,
			"certificate_status": cert["status"],
			"last_error": cert["last_error"],
		}
	)


@router.delete("/{cert_id}")
async def delete_certificate(
	request: Request,
	cert_id: str,
	user: sqlite3.Row = Depends(get_current_user),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	service = _service(request, conn)
	_owned(service, cert_id, user)
	try:
		await service.delete_certificate(cert_id)
	except SSLError as exc:
		raise http_error(exc) from exc
	return ok_response(message="Certificate deleted")


# ---------------------------------------------------------------------------
# Admin routes
# ---------------------------------------------------------------------------

@router.get("/admin/config")
def get_ssl_settings(
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	return ok_response(data=mask_ssl_configs(get_all_ssl_configs(conn)))


@router.put("/admin/config")
def update_config(
	payload: SSLConfigUpdate,
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	if payload.key not in SSL_CONFIG_KEYS:
		raise HTTPException(status_code=400, detail="Invalid configuration key")
	if is_masked_value(payload.key, payload.value):
		_log.info("SSL_CONFIG skipping masked/empty value for %s", payload.key)
		return ok_response(message="Masked value not saved", skipped=True)
	set_ssl_config(conn, payload.key, payload.value, payload.description)
	_log.info("SSL_CONFIG updated %s", payload.key)
	return ok_response(message="Configuration updated", skipped=False)


@router.put("/admin/config/bulk")
def bulk_update_config(
	configs: dict[str, Any] = Body(...),
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Store several settings at once; unusable values are skipped, not rejected."""
	saved: list[str] = []
	skipped: dict[str, str] = {}
	for key, value in configs.items():
		if value is None or value == "":
			continue
		if isinstance(value, bool):
			value = "true" if value else "false"
		value = str(value)
		reason = bulk_value_rejection(key, value)
		if reason:
			_log.info("SSL_CONFIG skipping %s: %s", key, reason)
			skipped[key] = reason
			continue
		set_ssl_config(conn, key, value)
		saved.append(key)
	return ok_response(message="Configuration updated", data={"saved": saved, "skipped": skipped})


@router.post("/admin/test-cloudflare")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def test_cloudflare(
	request: Request,
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	dns = _collaborators(request).get("dns_provider") or CloudflareDNS(get_ssl_config(conn, "CLOUDFLARE_API_TOKEN"))
	return ok_response(data=await dns.test_connection())


@router.post("/admin/test-google")
@limiter.limit(RATE_LIMIT_DEFAULT)
async def test_google(
	request: Request,
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	factory = _collaborators(request).get("eab_factory") or GoogleEABProvider
	provider = factory(get_ssl_config(conn, "GOOGLE_SERVICE_ACCOUNT_JSON"))
	return ok_response(data=await provider.test_service_account())


@router.get("/admin/certificates")
def admin_list_certificates(
	page: int = Query(1, ge=1),
	limit: int = Query(10, ge=1, le=100),
	status: Optional[str] = Query(None, max_length=32),
	search: Optional[str] = Query(None, max_length=253),
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Paged listing across all users; private keys are always hidden."""
	rows, total = list_certificates(conn, page=page, limit=limit, status=status, search=search)
	return ok_response(
		data=[to_json(AdminCertificate.from_row(row)) for row in rows],
		pagination={
			"page": page,
			"limit": limit,
			"total": total,
			"pages": (total + limit - 1) // limit,
		},
	)


@router.get("/admin/certificate/{cert_id}")
def admin_get_certificate(
	request: Request,
	cert_id: str,
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	try:
		cert = _service(request, conn).get(cert_id)
	except SSLError as exc:
		raise http_error(exc) from exc
	return ok_response(data=to_json(AdminCertificate.from_row(cert)))


@router.post("/admin/retry/{cert_id}")
def admin_retry_certificate(
	request: Request,
	cert_id: str,
	payload: Optional[RetryRequest] = None,
	_: sqlite3.Row = Depends(require_admin),
	conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
	"""Reset a FAILED certificate to VERIFIED or PENDING_VERIFICATION."""
	reenter = (payload or RetryRequest()).reenter
	try:
		cert = _service(request, conn).retry_issuance(cert_id, reenter)
	except SSLError as exc:
		raise http_error(exc) from exc
	return ok_response(message="Certificate reset for retry", data=to_json(AdminCertificate.from_row(cert)))
