#!/usr/bin/env python3
#
# tests/helpers.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Shared constants, row builders and in-memory collaborators for the SSL tests."""

from datetime import datetime, timezone

from hostssl.certs.acme import ACMEAuthorization, ACMEChallenge, ACMEOrder
from hostssl.certs.errors import ACMEError, ProviderAPIError
from hostssl.certs.google_eab import EABCredentials
from hostssl.db.sqlite_certificates import create_certificate, update_certificate

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
INTERMEDIATE = "acme-proxy.net"
SERVICE_DOMAIN = "example.app"
USER_TOKEN = "user-token-0123456789"
OTHER_TOKEN = "other-token-0123456789"
ADMIN_TOKEN = "admin-token-0123456789"

LEAF_PEM = "-----BEGIN CERTIFICATE-----\nTEVBRg==\n-----END CERTIFICATE-----"
CA_PEM = "-----BEGIN CERTIFICATE-----\nQ0E=\n-----END CERTIFICATE-----"
ROOT_PEM = "-----BEGIN CERTIFICATE-----\nUk9PVA==\n-----END CERTIFICATE-----"


def make_certificate(
	conn,
	hosting_id,
	*,
	domain=f"myhost.{SERVICE_DOMAIN}",
	domain_type="SUBDOMAIN",
	provider="LETS_ENCRYPT",
	status="VERIFIED",
	**fields,
):
	"""Insert a certificate row and move it straight to ``status``."""
	cert_id = create_certificate(
		conn,
		hosting_id=hosting_id,
		domain=domain,
		domain_type=domain_type,
		provider=provider,
		status=status,
		verification_token="verification-token",
	)
	if fields:
		update_certificate(conn, cert_id, **fields)
	return cert_id


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingSleep:
	def __init__(self):
		self.calls = []

	async def __call__(self, seconds):
		self.calls.append(seconds)


class FakeDNS:
	"""In-memory DNS provider with the create/delete/get surface of CloudflareDNS."""

	def __init__(self, *, fail_delete=False, fail_create_types=()):
		self.records = {}
		self.created = []
		self.deleted = []
		self.fail_delete = fail_delete
		self.fail_create_types = set(fail_create_types)
		self._next = 1

	async def create_record(self, record_type, name, content, proxied=False):
		if record_type in self.fail_create_types:
			raise ProviderAPIError(f"cannot create {record_type}", status_code=500)
		ref = f"zone1:rec{self._next}"
		self._next += 1
		self.records[ref] = (record_type, name, content)
		self.created.append((record_type, name, content))
		return ref

	async def delete_record(self, record_ref):
		self.deleted.append(record_ref)
		if self.fail_delete:
			raise ProviderAPIError("delete failed", status_code=500)
		self.records.pop(record_ref, None)

	async def get_record(self, name, record_type):
		for ref, (rtype, rname, _) in self.records.items():
			if rtype == record_type and rname == name:
				return ref
		return None

	async def test_connection(self):
		return {"ok": True, "zones": [SERVICE_DOMAIN], "error": None}


class FakeVerifier:
	"""Answers verify_txt from a script; the last answer repeats."""

	def __init__(self, *answers):
		self.answers = list(answers) or [True]
		self.calls = []

	async def verify_txt(self, domain, expected_value, cname_target=None):
		self.calls.append((domain, expected_value, cname_target))
		if len(self.answers) > 1:
			return self.answers.pop(0)
		return self.answers[0]

	async def verify_cname(self, domain, expected_target):
		return True


class FakeACME:
	"""Scripted stand-in for ACMEClient; records the calls it receives."""

	def __init__(
		self,
		*,
		challenge_types=("dns-01",),
		key_authorization="key-authorization-value",
		fail_on=None,
		chain=None,
	):
		self.challenge_types = challenge_types
		self.key_authorization = key_authorization
		self.fail_on = fail_on
		self.chain = chain or f"{LEAF_PEM}\n{CA_PEM}\n{ROOT_PEM}\n"
		self.calls = []
		self.eab = None
		self.email = None
		self.directory_url = None

	def factory(self, directory_url):
		self.directory_url = directory_url
		return self

	async def __aenter__(self):
		return self

	async def __aexit__(self, *args):
		return False

	def _step(self, name):
		self.calls.append(name)
		if self.fail_on == name:
			raise ACMEError(f"{name} exploded")

	async def create_account(self, email, eab=None):
		self._step("create_account")
		self.email = email
		self.eab = eab
		return "https://ca.test/acct/1"

	async def create_order(self, domain):
		self._step("create_order")
		return ACMEOrder(
			url="https://ca.test/order/1",
			status="pending",
			authorizations=["https://ca.test/authz/1"],
			finalize="https://ca.test/order/1/finalize",
		)

	async def get_authorizations(self, order):
		self._step("get_authorizations")
		return [
			ACMEAuthorization(
				url="https://ca.test/authz/1",
				identifier={"type": "dns", "value": "myhost.example.app"},
				challenges=[
					ACMEChallenge(type=t, url=f"https://ca.test/chall/{t}", token="tok")
					for t in self.challenge_types
				],
			)
		]

	def get_challenge_key_authorization(self, challenge):
		return self.key_authorization

	async def complete_challenge(self, challenge):
		self._step("complete_challenge")
		return challenge

	async def wait_for_valid_status(self, challenge):
		self._step("wait_for_valid_status")
		return challenge

	async def finalize_order(self, order, csr_der):
		self._step("finalize_order")
		assert csr_der
		return order.model_copy(update={"status": "valid", "certificate": "https://ca.test/cert/1"})

	async def get_certificate(self, order):
		self._step("get_certificate")
		return self.chain


class FakeEABProvider:
	def __init__(self, service_account_json, *, error=None):
		self.service_account_json = service_account_json
		self.error = error
		self.calls = 0

	async def get_eab_key(self):
		self.calls += 1
		if self.error:
			raise self.error
		return EABCredentials(key_id="minted-kid", hmac_key="bWludGVkLWhtYWM")

	async def test_service_account(self):
		return {"ok": True, "message": "ok", "project_id": "proj", "email": "sa@proj.iam.gserviceaccount.com"}
