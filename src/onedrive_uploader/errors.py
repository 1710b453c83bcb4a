# -*- coding: utf-8 -*-
"""
Error types for OneDrive uploads.

Transport and protocol errors are recoverable and are turned into job results
by the worker. Fatal errors stop the whole run.
"""


class UploaderError(Exception):
    """Base class for uploader errors."""


class TransportError(UploaderError):
    """
    Raised when the Graph API answers with a non-success status.

    Args:
        status_code (int): HTTP status code, or None for network-level failures
        headers (dict): Response headers (case-insensitive mapping when available)
        body (str): Response body, truncated by the caller if needed
    """

    def __init__(self, status_code, headers=None, body="", message=None):
        self.status_code = status_code
        self.headers = headers if headers is not None else {}
        self.body = body
        if message is None:
            if status_code is None:
                message = f"Network error: {body[:200]}"
            else:
                message = f"Graph API error {status_code}: {body[:200]}"
        super().__init__(message)


class PermanentError(UploaderError):
    """Raised when a failure must not be retried (e.g. 507 Insufficient Storage)."""


class ProtocolError(UploaderError):
    """Raised when an upload session response is malformed or unexpected."""


class FileSystemError(UploaderError):
    """Raised for unreadable files or names the drive does not accept."""


class FatalError(UploaderError):
    """Base class for errors that terminate the run."""


class AuthenticationError(FatalError):
    """Raised when no valid bearer token can be obtained."""


class InvariantViolation(FatalError):
    """Raised when a scheduler invariant is broken by the caller or a worker."""


class InvalidPayload(InvariantViolation, TypeError):
    """Raised when enqueueing a missing payload or a callable."""


__all__ = [
    'AuthenticationError',
    'FatalError',
    'FileSystemError',
    'InvalidPayload',
    'InvariantViolation',
    'PermanentError',
    'ProtocolError',
    'TransportError',
    'UploaderError',
]
