# aimuse/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

import sentry_sdk
from prometheus_client import (
    Counter, Histogram,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "ai-muse", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            handler.setFormatter(jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            ))
        logger.addHandler(handler)
    return logger


logger = setup_logger()

if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "muse_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "muse_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

FLOW_OUTCOMES = Counter(
    "muse_flow_total",
    "Mint/update flow outcomes by final stage",
    ["flow", "outcome", "stage"],
)

FLOW_LATENCY = Histogram(
    "muse_flow_latency_seconds",
    "End-to-end mint/update flow latency",
    ["flow"],
)

CHAIN_TX_COUNTER = Counter(
    "muse_chain_tx_total",
    "Chain write attempts",
    ["operation", "outcome"],
)

STORE_ERRORS = Counter(
    "muse_store_errors_total",
    "Record store failures",
    ["operation", "error_code"],
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def observe_flow(start_ts: float, flow: str, outcome: str, stage: str):
    try:
        FLOW_LATENCY.labels(flow=flow).observe(time.time() - start_ts)
        FLOW_OUTCOMES.labels(flow=flow, outcome=outcome, stage=stage).inc()
    except Exception:
        pass


def inc_chain_tx(operation: str, outcome: str):
    try:
        CHAIN_TX_COUNTER.labels(operation=operation, outcome=outcome).inc()
    except Exception:
        pass


def inc_store_error(operation: str, code: str):
    try:
        STORE_ERRORS.labels(operation=operation, error_code=code).inc()
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
