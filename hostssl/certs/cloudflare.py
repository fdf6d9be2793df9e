#!/usr/bin/env python3
#
# hostssl/certs/cloudflare.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Cloudflare DNS adapter for challenge TXT and delegation CNAME records."""

from __future__ import annotations

import logging
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from .constants import HTTP_TIMEOUT_SECONDS
from .errors import (
	InvalidRecordRefError,
	MalformedResponseError,
	NotConfiguredError,
	ProviderAPIError,
	ProviderAuthError,
	ZoneNotFoundError,
)

_log = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

RecordType = Literal["TXT", "CNAME"]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class CloudflareMessage(BaseModel):
	code: Optional[int] = None
	message: str = ""


class CloudflareEnvelope(BaseModel):
	"""Common wrapper of every Cloudflare v4 response."""
	success: bool
	errors: list[CloudflareMessage] = []
	result: Any = None


class CloudflareZone(BaseModel):
	id: str
	name: str


class CloudflareRecord(BaseModel):
	id: str
	type: str
	name: str
	content: str = ""


_ZONES = TypeAdapter(list[CloudflareZone])
_RECORDS = TypeAdapter(list[CloudflareRecord])


def apex_domain(name: str) -> str:
	"""Last two labels of a record name, used as the zone lookup key."""
	return ".".join(name.strip().rstrip(".").lower().split(".")[-2:])


def parse_record_ref(record_ref: str) -> tuple[str, str]:
	"""Split a ``zoneId:recordId`` reference."""
	zone_id, sep, record_id = (record_ref or "").partition(":")
	if not sep or not zone_id or not record_id or ":" in record_id:
		raise InvalidRecordRefError(f"Invalid record ID format: {record_ref!r}")
	return zone_id, record_id


class CloudflareDNS:
	"""Minimal Cloudflare v4 client scoped to what certificate validation needs.

	Record references returned by :meth:`create_record` embed the zone id,
	so deleting never needs a second zone lookup.
	"""

	def __init__(
		self,
		api_token: Optional[str],
		*,
		base_url: str = CLOUDFLARE_API_BASE,
		timeout: float = HTTP_TIMEOUT_SECONDS,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	):
		self.api_token = api_token
		self.base_url = base_url
		self.timeout = timeout
		self._transport = transport

	async def _request(
		self,
		method: str,
		path: str,
		*,
		params: Optional[dict] = None,
		json: Optional[dict] = None,
	) -> Any:
		"""Perform an API call and return the envelope's ``result``."""
		if not self.api_token:
			raise NotConfiguredError("Cloudflare API Token not configured")

		async with httpx.AsyncClient(
			base_url=self.base_url,
			timeout=self.timeout,
			transport=self._transport,
			headers={"Authorization": f"Bearer {self.api_token}"},
		) as client:
			try:
				resp = await client.request(method, path, params=params, json=json)
			except httpx.HTTPError as exc:
				raise ProviderAPIError(f"Cloudflare request failed: {exc}") from exc

		if resp.status_code in (401, 403):
			raise ProviderAuthError(
				f"Cloudflare rejected the API token ({resp.status_code}): {_error_text(resp)}"
			)
		if not resp.is_success:
			raise ProviderAPIError(
				f"Cloudflare API error {resp.status_code}: {_error_text(resp)}",
				status_code=resp.status_code,
			)

		try:
			envelope = CloudflareEnvelope.model_validate(resp.json())
		except (ValueError, ValidationError) as exc:
			raise MalformedResponseError(f"Unexpected Cloudflare response: {exc}") from exc
		if not envelope.success:
			detail = "; ".join(e.message for e in envelope.errors) or "unknown error"
			raise ProviderAPIError(f"Cloudflare API error: {detail}", status_code=resp.status_code)
		return envelope.result

	async def _zone_id(self, name: str) -> str:
		root = apex_domain(name)
		result = await self._request("GET", "/zones", params={"name": root})
		try:
			zones = _ZONES.validate_python(result or [])
		except ValidationError as exc:
			raise MalformedResponseError(f"Unexpected zone list: {exc}") from exc
		if not zones:
			raise ZoneNotFoundError(f"Zone not found for domain: {root}")
		return zones[0].id

	async def create_record(
		self,
		record_type: RecordType,
		name: str,
		content: str,
		proxied: bool = False,
	) -> str:
		"""Create a record with automatic TTL; return ``zoneId:recordId``."""
		zone_id = await self._zone_id(name)
		result = await self._request(
			"POST",
			f"/zones/{zone_id}/dns_records",
			json={
				"type": record_type,
				"name": name,
				"content": content,
				"ttl": 1,  # auto
				"proxied": proxied,
			},
		)
		try:
			record = CloudflareRecord.model_validate(result)
		except ValidationError as exc:
			raise MalformedResponseError("Failed to create DNS record: no record id returned") from exc
		_log.info("CLOUDFLARE created %s %s (zone=%s record=%s)", record_type, name, zone_id, record.id)
		return f"{zone_id}:{record.id}"

	async def delete_record(self, record_ref: str) -> None:
		"""Delete a record by the reference :meth:`create_record` returned."""
		zone_id, record_id = parse_record_ref(record_ref)
		await self._request("DELETE", f"/zones/{zone_id}/dns_records/{record_id}")
		_log.info("CLOUDFLARE deleted record %s (zone=%s)", record_id, zone_id)

	async def get_record(self, name: str, record_type: RecordType) -> Optional[str]:
		"""Reference of the first record with exactly this name and type, or None."""
		zone_id = await self._zone_id(name)
		result = await self._request(
			"GET",
			f"/zones/{zone_id}/dns_records",
			params={"name": name, "type": record_type},
		)
		try:
			records = _RECORDS.validate_python(result or [])
		except ValidationError as exc:
			raise MalformedResponseError(f"Unexpected record list: {exc}") from exc
		if not records:
			return None
		return f"{zone_id}:{records[0].id}"

	async def test_connection(self) -> dict[str, Any]:
		"""Credential self-test: ``{"ok": bool, "zones": [...], "error": str|None}``."""
		try:
			result = await self._request("GET", "/zones")
			zones = _ZONES.validate_python(result or [])
		except (NotConfiguredError, ProviderAuthError, ProviderAPIError, MalformedResponseError) as exc:
			return {"ok": False, "zones": [], "error": str(exc)}
		except ValidationError as exc:
			return {"ok": False, "zones": [], "error": f"Unexpected Cloudflare response: {exc}"}
		return {"ok": True, "zones": [z.name for z in zones], "error": None}


def _error_text(resp: httpx.Response) -> str:
	"""Best-effort readable error from a Cloudflare error response."""
	try:
		envelope = CloudflareEnvelope.model_validate(resp.json())
		if envelope.errors:
			return "; ".join(e.message for e in envelope.errors)
	except (ValueError, ValidationError):
		pass
	return resp.text[:200]
