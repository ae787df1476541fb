"""Broker configuration helpers for Dramatiq actor setup.

Actors are declared against whichever broker is current when
:mod:`pushfeed.jobs.actors` is imported, so this check runs at import time
and again before each actor invocation.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

STUB_BROKER_ENV_VAR = "PUSHFEED_ALLOW_STUB_BROKER"

_BROKER_LOCK = threading.Lock()
_broker_configured = False


def _is_running_tests() -> bool:
    """Check if the current process is running under pytest."""
    return "pytest" in sys.modules or any(
        key in os.environ
        for key in ["PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS"]
    )


def _should_use_stub_broker() -> bool:
    """Return True when a StubBroker may stand in for a real broker.

    Either ``PUSHFEED_ALLOW_STUB_BROKER`` is truthy or the process is a test
    run.
    """
    allow_stub = os.environ.get(STUB_BROKER_ENV_VAR, "")
    return allow_stub.lower() in {"1", "true", "yes"} or _is_running_tests()


def ensure_broker_configured() -> None:
    """Ensure a Dramatiq broker is configured.

    Thread-safe: uses a lock and sentinel to guarantee idempotent
    configuration even when called concurrently from multiple Dramatiq
    worker threads.

    Raises
    ------
    RuntimeError
        If no broker is configured and stub brokers are not allowed.

    """
    global _broker_configured

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:  # pragma: no cover - exercised in tests and worker startup
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # ImportError: the default RabbitMQ broker's client is missing
            current_broker = None

        if current_broker is None:
            if _should_use_stub_broker():
                dramatiq.set_broker(StubBroker())
            else:  # pragma: no cover - guard for prod misconfigurations
                message = (
                    "No Dramatiq broker configured. "
                    f"Set {STUB_BROKER_ENV_VAR}=1 for "
                    "local/test runs or configure a real broker."
                )
                raise RuntimeError(message)

        _broker_configured = True
