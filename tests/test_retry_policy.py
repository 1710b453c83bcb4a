import pytest
from requests.structures import CaseInsensitiveDict

from onedrive_uploader.retry_policy import FALLBACK_DELAY_SECONDS, classify


def test_insufficient_storage_aborts():
    decision = classify(507, {"Retry-After": "30"})

    assert decision.abort is True
    assert decision.delay == 0


@pytest.mark.parametrize("status", [429, 500, 503, 509])
def test_retry_after_statuses_use_header(status):
    decision = classify(status, {"Retry-After": "5"})

    assert decision.abort is False
    assert decision.delay == 5


@pytest.mark.parametrize("status", [429, 500, 503, 509])
def test_retry_after_statuses_without_header_retry_immediately(status):
    assert classify(status, {}).delay == 0
    assert classify(status).delay == 0


def test_header_lookup_is_case_insensitive():
    assert classify(503, {"retry-after": "7"}).delay == 7
    assert classify(429, CaseInsensitiveDict({"RETRY-AFTER": "12"})).delay == 12


def test_malformed_retry_after_counts_as_absent():
    assert classify(503, {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}).delay == 0


@pytest.mark.parametrize("status", [400, 401, 404, 409, 502, None])
def test_other_failures_use_fixed_fallback(status):
    decision = classify(status, {"Retry-After": "60"})

    assert decision.abort is False
    assert decision.delay == FALLBACK_DELAY_SECONDS == 5
