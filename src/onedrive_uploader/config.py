# -*- coding: utf-8 -*-
"""
Configuration management for OneDrive uploads.

This module handles command-line argument parsing and configuration setup.
Credentials and endpoints may also come from the environment or a .env file.
"""

import os
import sys

from dotenv import load_dotenv

from .chunking import MAX_FRAGMENT_SIZE
from .graph_api import DEFAULT_GRAPH_ENDPOINT, default_drive_root
from .session_store import DEFAULT_SESSION_DIR

# Graph API concurrent request limit for one app
MAX_UPLOAD_WORKERS_LIMIT = 10

# Redirect URI registered for the one-time authorization code sign-in
DEFAULT_REDIRECT_URI = 'http://localhost:8080/callback'


def _arg(argv, position, default=None):
    """Return argv[position] when present and non-empty, else default."""
    if len(argv) > position and argv[position]:
        return argv[position]
    return default


def _flag(argv, position, default):
    return (_arg(argv, position, default)).lower() == "true"


class Config:
    """Configuration for OneDrive upload operations"""

    def __init__(self, argv=None):
        """
        Parse command-line arguments and initialize configuration.

        Arguments are parsed from sys.argv in the following order:
        1. source_path - Local directory to upload
        2. destination_path (optional) - Destination folder in the drive (default: /)
        3. client_id (optional) - App registration client ID (default: $ONEDRIVE_CLIENT_ID)
        4. client_secret (optional) - App registration client secret (default: $ONEDRIVE_CLIENT_SECRET)
        5. max_retry (optional) - Retries per file or folder (default: 3)
        6. max_upload_workers (optional) - Max concurrent uploads (default: 4, capped at 10)
        7. fragment_size_mb (optional) - Target fragment size in MiB (default: 10)
        8. simple_upload_small_files (optional) - Single request for files under 4 MiB (default: True)
        9. file_pattern (optional) - Name filter as '/regex/flags' (default: none)
        10. exclude_patterns (optional) - Comma-separated exclusion patterns (default: "")
        11. force_upload (optional) - Upload even unchanged files (default: False)
        12. debug (optional) - Enable general debug output (default: False)

        Environment-only settings: ONEDRIVE_TENANT, ONEDRIVE_TOKEN_FILE,
        ONEDRIVE_SESSION_DIR, ONEDRIVE_LOGIN_ENDPOINT, ONEDRIVE_GRAPH_ENDPOINT,
        ONEDRIVE_DRIVE_ROOT, SHOW_PROGRESS.

        Args:
            argv (list): Argument vector to parse (default: sys.argv)
        """
        argv = sys.argv if argv is None else argv

        # Required arguments
        self.source_path = argv[1]

        # Optional arguments with defaults
        self.destination_path = _arg(argv, 2, "/")
        self.client_id = _arg(argv, 3, os.environ.get('ONEDRIVE_CLIENT_ID', ''))
        self.client_secret = _arg(argv, 4, os.environ.get('ONEDRIVE_CLIENT_SECRET', ''))
        self.max_retry = int(_arg(argv, 5, 3))

        # Max upload workers: Default 4 (Graph API concurrent request limit)
        # Can be overridden but should not exceed 10 to respect API limits
        self.max_upload_workers = min(int(_arg(argv, 6, 4)), MAX_UPLOAD_WORKERS_LIMIT)

        self.fragment_size_mb = float(_arg(argv, 7, 10))
        self.simple_upload_small_files = _flag(argv, 8, "true")
        self.file_pattern = _arg(argv, 9, "")
        self.exclude_patterns = _arg(argv, 10, "")
        self.force_upload = _flag(argv, 11, "false")
        self.debug = _flag(argv, 12, "false")

        # Environment-only settings
        self.tenant = os.environ.get('ONEDRIVE_TENANT', 'common')
        self.token_file = os.environ.get('ONEDRIVE_TOKEN_FILE', 'token.json')
        self.session_dir = os.environ.get('ONEDRIVE_SESSION_DIR', DEFAULT_SESSION_DIR)
        self.login_endpoint = os.environ.get('ONEDRIVE_LOGIN_ENDPOINT', 'login.microsoftonline.com')
        self.graph_endpoint = os.environ.get('ONEDRIVE_GRAPH_ENDPOINT', DEFAULT_GRAPH_ENDPOINT)
        self.drive_root = os.environ.get('ONEDRIVE_DRIVE_ROOT') or default_drive_root(self.graph_endpoint)

        # Derived values
        self.exclude_patterns_list = [p.strip() for p in self.exclude_patterns.split(',') if p.strip()]

    def validate(self):
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.source_path:
            raise ValueError("source_path cannot be empty")
        if not os.path.isdir(self.source_path):
            raise ValueError(f"source_path is not a directory: {self.source_path}")
        if not self.client_id:
            raise ValueError("client_id cannot be empty (argument 3 or ONEDRIVE_CLIENT_ID)")
        if not self.client_secret:
            raise ValueError("client_secret cannot be empty (argument 4 or ONEDRIVE_CLIENT_SECRET)")
        if self.max_retry < 0:
            raise ValueError("max_retry must be non-negative")
        if self.max_upload_workers < 1:
            raise ValueError("max_upload_workers must be at least 1")
        if self.fragment_size_mb <= 0:
            raise ValueError("fragment_size_mb must be positive")
        if self.fragment_size_mb * 1024 * 1024 > MAX_FRAGMENT_SIZE:
            print(f"[!] fragment_size_mb {self.fragment_size_mb} exceeds 60 MiB, it will be clamped")


def parse_config(argv=None):
    """
    Parse configuration from command-line arguments.

    A .env file in the working directory is loaded first, so credentials can
    be supplied without putting them on the command line.

    Returns:
        Config: Configured Config object

    Raises:
        ValueError: If configuration is invalid
        IndexError: If required arguments are missing
    """
    load_dotenv()
    config = Config(argv)
    config.validate()
    return config
