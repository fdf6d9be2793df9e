#!/usr/bin/env python3
#
# hostssl/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""HostSSL: automated SSL issuance for a hosting reseller panel."""

from .main import create_app

__all__ = ["create_app"]
