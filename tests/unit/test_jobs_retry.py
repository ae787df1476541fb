"""Unit tests for the job retry tables."""

from __future__ import annotations

import pytest

from pushfeed.enrichment.errors import EnrichmentError, PushEventNotFoundError
from pushfeed.github.errors import ApiError, NetworkError, RateLimitExceeded
from pushfeed.jobs.retry import (
    ENRICH_RETRY_TABLE,
    INGEST_RETRY_TABLE,
    RetryKind,
    RetryPolicy,
    RetryTable,
    classify_error,
)

_NETWORK = NetworkError.transport("u", "timeout")
_RATE = RateLimitExceeded.exhausted(0, None)
_API = ApiError.http_error(404, "u")
_ENRICH = EnrichmentError.nothing_enriched(1)
_MISSING = PushEventNotFoundError(1)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (_NETWORK, RetryKind.NETWORK),
        (_RATE, RetryKind.RATE_LIMIT),
        (_API, RetryKind.API),
        (_ENRICH, RetryKind.ENRICHMENT),
        (_MISSING, RetryKind.NOT_FOUND),
        (ValueError("x"), None),
    ],
)
def test_classify_error(exc: BaseException, expected: RetryKind | None) -> None:
    """Errors map onto retry kinds; unknown errors stay unclassified."""
    assert classify_error(exc) == expected


class TestIngestTable:
    """Retry rules for feed polling."""

    def test_network_errors_get_five_attempts(self) -> None:
        """Four retries follow the first attempt."""
        assert INGEST_RETRY_TABLE.should_retry(3, _NETWORK)
        assert not INGEST_RETRY_TABLE.should_retry(4, _NETWORK)

    def test_rate_limits_get_three_attempts(self) -> None:
        """Two retries follow the first attempt."""
        assert INGEST_RETRY_TABLE.should_retry(1, _RATE)
        assert not INGEST_RETRY_TABLE.should_retry(2, _RATE)

    def test_api_errors_are_discarded(self) -> None:
        """API errors are never retried and are thrown without noise."""
        assert not INGEST_RETRY_TABLE.should_retry(0, _API)
        assert ApiError in INGEST_RETRY_TABLE.discarded_errors

    def test_unclassified_errors_are_not_retried(self) -> None:
        """Unexpected exceptions surface immediately."""
        assert not INGEST_RETRY_TABLE.should_retry(0, RuntimeError("boom"))


class TestEnrichTable:
    """Retry rules for enrichment."""

    def test_enrichment_errors_get_three_attempts(self) -> None:
        """Internal enrichment failures retry twice."""
        assert ENRICH_RETRY_TABLE.should_retry(1, _ENRICH)
        assert not ENRICH_RETRY_TABLE.should_retry(2, _ENRICH)

    def test_missing_push_events_are_discarded(self) -> None:
        """A deleted push event will never appear."""
        assert not ENRICH_RETRY_TABLE.should_retry(0, _MISSING)
        assert ENRICH_RETRY_TABLE.discarded_errors == (PushEventNotFoundError,)

    def test_backoff_envelope(self) -> None:
        """Enrichment backs off faster than ingestion."""
        assert ENRICH_RETRY_TABLE.min_backoff_ms < INGEST_RETRY_TABLE.min_backoff_ms
        assert ENRICH_RETRY_TABLE.max_backoff_ms < INGEST_RETRY_TABLE.max_backoff_ms


def test_kinds_missing_from_a_table_are_not_retried() -> None:
    """Tables only retry the kinds they list."""
    table = RetryTable(policies={RetryKind.NETWORK: RetryPolicy(max_attempts=2)})

    assert table.policy_for(_RATE) is None
    assert not table.should_retry(0, _RATE)
    assert table.should_retry(0, _NETWORK)
    assert table.discarded_errors == ()
