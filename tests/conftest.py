#!/usr/bin/env python3
#
# tests/conftest.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

import json
from datetime import timedelta
from types import SimpleNamespace

import pytest

from hostssl.certs.settings import SSLIssuanceConfig
from hostssl.db.sqlite_hostings import create_auth_token, create_hosting, create_user
from hostssl.db.sqlite_runtime import close_connection, connect
from hostssl.db.sqlite_schema import init_schema
from hostssl.db.sqlite_settings import set_setting, set_ssl_config
from hostssl.utils.rate_limit import limiter
from hostssl.utils.time import utcnow
from tests.helpers import ADMIN_TOKEN, INTERMEDIATE, OTHER_TOKEN, SERVICE_DOMAIN, USER_TOKEN


@pytest.fixture(autouse=True)
def _disable_rate_limits():
	limiter.enabled = False
	yield
	limiter.enabled = True


@pytest.fixture
def db_path(tmp_path):
	return tmp_path / "hostssl.db"


@pytest.fixture
def conn(db_path):
	conn = connect(db_path)
	init_schema(conn)
	yield conn
	close_connection(conn)


@pytest.fixture
def seeded(conn):
	"""A user with an active hosting on the service domain, an admin, and SSL settings."""
	user_id = create_user(conn, "owner@example.org", name="Owner")
	other_id = create_user(conn, "other@example.org", name="Other")
	admin_id = create_user(conn, "admin@example.org", name="Admin", is_admin=True)
	hosting_id = create_hosting(conn, user_id, "myhost", f"myhost.{SERVICE_DOMAIN}")
	other_hosting_id = create_hosting(conn, other_id, "otherhost", f"otherhost.{SERVICE_DOMAIN}")

	expires = utcnow() + timedelta(days=1)
	create_auth_token(conn, user_id, USER_TOKEN, expires)
	create_auth_token(conn, other_id, OTHER_TOKEN, expires)
	create_auth_token(conn, admin_id, ADMIN_TOKEN, expires)

	set_setting(conn, "allowed_domains", json.dumps([
		{"domain": SERVICE_DOMAIN, "enabled": True},
		{"domain": "disabled.app", "enabled": False},
	]))
	set_ssl_config(conn, "ACME_EMAIL", "ops@example.org")
	set_ssl_config(conn, "INTERMEDIATE_DOMAIN", INTERMEDIATE)
	set_ssl_config(conn, "DNS_PROPAGATION_DELAY", "0")

	return SimpleNamespace(
		user_id=user_id,
		other_id=other_id,
		admin_id=admin_id,
		hosting_id=hosting_id,
		other_hosting_id=other_hosting_id,
	)


@pytest.fixture
def issuance_config():
	return SSLIssuanceConfig(
		acme_email="ops@example.org",
		intermediate_domain=INTERMEDIATE,
		service_domains=(SERVICE_DOMAIN,),
		propagation_delay=30.0,
	)
