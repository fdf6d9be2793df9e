#!/usr/bin/env python3
#
# hostssl/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .api import ssl as ssl_api
from .db.sqlite_runtime import close_all_connections, close_connection, connect
from .db.sqlite_schema import init_schema
from .tasks.reconcile import reconcile_loop
from .utils.config import Config, get_config
from .utils.rate_limit import limiter

_log = logging.getLogger(__name__)

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",    # Cyan
	"INFO": "\033[32m",     # Green
	"WARNING": "\033[33m",  # Yellow
	"ERROR": "\033[31m",    # Red
	"CRITICAL": "\033[35m", # Magenta
}
_RESET = "\033[0m"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ColoredFormatter(logging.Formatter):
	"""Custom formatter that adds color to log levels in TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		if orig_levelname in _LOG_COLORS:
			record.levelname = f"{_LOG_COLORS[orig_levelname]}{orig_levelname:<8}{_RESET}"
		else:
			record.levelname = f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def _setup_logging(log_level: str) -> None:
	"""Configure unified logging for the entire application."""
	level = getattr(logging, log_level, logging.INFO)

	if sys.stdout.isatty():
		formatter = _ColoredFormatter(
			fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
			datefmt=_DATE_FORMAT,
		)
	else:
		formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)

	# force=True removes any pre-existing handlers (e.g. from uvicorn)
	logging.basicConfig(
		level=level,
		handlers=[logging.StreamHandler(sys.stdout)],
		force=True,
	)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	# Quiet down noisy third-party libraries
	for name in ("httpcore", "httpx"):
		logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg: Config = app.state.cfg

	# ─── BOOTSTRAP ───────────────────────────────────────────
	conn = connect(cfg.db_path)
	try:
		init_schema(conn)
	finally:
		close_connection(conn)

	stop_event = asyncio.Event()
	reconcile_task = asyncio.create_task(
		reconcile_loop(
			cfg.db_path,
			timedelta(minutes=cfg.issuing_timeout_minutes),
			cfg.reconcile_interval_seconds,
			stop_event,
		)
	)
	app.state.reconcile_task = reconcile_task
	_log.info("HostSSL started successfully (pid=%d)", os.getpid())

	yield

	# ─── SHUTDOWN ────────────────────────────────────────────
	stop_event.set()
	try:
		await asyncio.wait_for(reconcile_task, timeout=5.0)
	except asyncio.TimeoutError:
		reconcile_task.cancel()
		await asyncio.gather(reconcile_task, return_exceptions=True)

	closed_connections = close_all_connections()
	_log.info("SQLITE_SHUTDOWN connections_closed=%d", closed_connections)
	_log.info("HostSSL shutdown complete")


def create_app(cfg: Optional[Config] = None) -> FastAPI:
	"""Application factory for HostSSL."""
	cfg = cfg or get_config()
	_setup_logging(cfg.log_level)

	app = FastAPI(
		title="HostSSL",
		description="Automated SSL certificate issuance for hosting accounts",
		version="0.1.0",
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	app.state.cfg = cfg
	app.state.db_path = cfg.db_path
	# Collaborator overrides for the SSL workflow (DNS provider, verifier, ACME)
	app.state.ssl_collaborators = {}

	# Rate limiting
	app.state.limiter = limiter
	app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

	# ─── API ROUTES ──────────────────────────────────────────
	app.include_router(ssl_api.router, prefix="/api/ssl")

	return app
