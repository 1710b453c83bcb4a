# -*- coding: utf-8 -*-
"""
Retry classification for Graph API failures.

Maps a failed response (status code plus headers) to a retry decision that the
scheduler understands.
"""

from collections import namedtuple

# Status codes that carry a server-suggested delay
RETRY_AFTER_STATUSES = {
    429: "Too Many Requests",
    500: "Internal Server Error",
    503: "Service Unavailable",
    509: "Bandwidth Limit Exceeded",
}

INSUFFICIENT_STORAGE = 507

# Delay for failures the classifier knows nothing about
FALLBACK_DELAY_SECONDS = 5


RetryDecision = namedtuple('RetryDecision', ['delay', 'abort', 'reason'])
RetryDecision.__doc__ = """
Outcome of classifying a failed request.

Fields:
    delay (int): Seconds to wait before the next attempt
    abort (bool): True when the job must fail without further retries
    reason (str): Human-readable explanation for log output
"""


def _retry_after_seconds(headers):
    """Parse the Retry-After header, returning None when absent or not an integer."""
    if not headers:
        return None
    value = headers.get('Retry-After')
    if value is None:
        # Plain dicts are case-sensitive, requests' CaseInsensitiveDict is not
        for key, header_value in headers.items():
            if key.lower() == 'retry-after':
                value = header_value
                break
    if value is None:
        return None
    try:
        return max(0, int(str(value).strip()))
    except ValueError:
        return None


def classify(status_code, headers=None):
    """
    Classify a failed Graph API request.

    Decision table:
        - 507 (Insufficient Storage): abort, delay 0
        - 429, 500, 503, 509: retry, delay = Retry-After header or 0
        - anything else (including network errors with no status): retry, delay 5

    Args:
        status_code (int): HTTP status code, or None for network-level errors
        headers (dict): Response headers

    Returns:
        RetryDecision: The decision for the scheduler
    """
    if status_code == INSUFFICIENT_STORAGE:
        return RetryDecision(delay=0, abort=True, reason="Insufficient Storage")

    if status_code in RETRY_AFTER_STATUSES:
        delay = _retry_after_seconds(headers)
        return RetryDecision(
            delay=delay if delay is not None else 0,
            abort=False,
            reason=RETRY_AFTER_STATUSES[status_code]
        )

    return RetryDecision(
        delay=FALLBACK_DELAY_SECONDS,
        abort=False,
        reason=f"Unknown error {status_code}. Just delay for {FALLBACK_DELAY_SECONDS} seconds."
    )
