# -*- coding: utf-8 -*-
"""
OneDrive Upload Package
=======================

This package uploads a local directory tree to OneDrive through the
Microsoft Graph API, with bounded-concurrency retrying uploads and resumable
chunked transfers that survive process restarts.

Modules:
--------
- config: Configuration and argument parsing
- auth: Microsoft authentication (token cache + refresh)
- graph_api: Microsoft Graph API operations
- chunking: Fixed-size fragment splitting and fragment size computation
- retry_policy: Mapping of failed responses to retry decisions
- session_store: Persisted resumable upload sessions
- scheduler: Bounded-concurrency retrying job queue
- uploader: Small-file, chunked and folder uploads
- parallel_uploader: Walker, scheduler and uploader glue
- progress: Progress slots and console rendering
- file_handler: Directory walking, name validation and exclusion
- monitoring: Rate limiting monitoring and statistics tracking
- thread_utils: Thread-safe console output and counters
- utils: Shared utility functions

Usage Example:
-------------
    from onedrive_uploader.config import parse_config
    from onedrive_uploader.auth import TokenProvider
    from onedrive_uploader.graph_api import GraphClient

    cfg = parse_config()
    provider = TokenProvider(cfg.client_id, cfg.client_secret, cfg.tenant)
    client = GraphClient(provider, cfg.drive_root, cfg.destination_path)
"""

__version__ = "1.0.0"

# Main exports for convenience
from .config import parse_config, Config
from .auth import TokenProvider
from .chunking import FixedChunkSplitter, compute_fragment_size, iter_fragments
from .errors import (
    AuthenticationError,
    FatalError,
    FileSystemError,
    InvalidPayload,
    InvariantViolation,
    PermanentError,
    ProtocolError,
    TransportError,
)
from .file_handler import FileEntry, WalkMode, walk
from .graph_api import GraphClient
from .monitoring import upload_stats, rate_monitor, print_rate_limiting_summary
from .parallel_uploader import ParallelUploader
from .progress import ConsoleProgress, NullProgress
from .retry_policy import RetryDecision, classify
from .scheduler import Failure, PermanentFailure, RetryAfter, Scheduler, Success
from .session_store import SessionStore, UploadSession
from .uploader import UploadSessionManager
from .utils import is_debug_enabled

__all__ = [
    # Configuration
    'parse_config',
    'Config',
    # Authentication
    'TokenProvider',
    # Graph API
    'GraphClient',
    # Chunking
    'FixedChunkSplitter',
    'compute_fragment_size',
    'iter_fragments',
    # Errors
    'AuthenticationError',
    'FatalError',
    'FileSystemError',
    'InvalidPayload',
    'InvariantViolation',
    'PermanentError',
    'ProtocolError',
    'TransportError',
    # Walking
    'FileEntry',
    'WalkMode',
    'walk',
    # Scheduling
    'Scheduler',
    'Success',
    'RetryAfter',
    'Failure',
    'PermanentFailure',
    'RetryDecision',
    'classify',
    # Uploads
    'ParallelUploader',
    'SessionStore',
    'UploadSession',
    'UploadSessionManager',
    # Progress
    'ConsoleProgress',
    'NullProgress',
    # Monitoring
    'upload_stats',
    'rate_monitor',
    'print_rate_limiting_summary',
    # Utilities
    'is_debug_enabled',
]
