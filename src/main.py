#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
OneDrive Directory Upload Script
================================

PURPOSE:
    Uploads a local directory tree to OneDrive through the Microsoft Graph API.
    Folders are recreated, small files are sent in one request and large files
    use resumable upload sessions that continue where an interrupted run
    stopped. Transient failures and throttling are retried per file.

SYNOPSIS:
    python main.py <source_path> [destination_path] [client_id] [client_secret]
                   [max_retry] [max_upload_workers] [fragment_size_mb]
                   [simple_upload_small_files] [file_pattern]
                   [exclude_patterns] [force_upload] [debug]

PARAMETERS:
    <source_path>
        Local directory whose contents are uploaded.
        `Type`: String (path)
        `Position`: 1

    [destination_path]
        Destination folder in the drive. Default: '/' (drive root)
        `Position`: 2

    [client_id] [client_secret]
        Azure AD app registration credentials. Default: $ONEDRIVE_CLIENT_ID
        and $ONEDRIVE_CLIENT_SECRET (a .env file is honored).
        `WARNING: Keep the secret out of version control.
        `Position`: 3, 4

    [max_retry]
        Retries per file or folder before it is reported as failed. Default: 3
        `Position`: 5

    [max_upload_workers]
        Concurrent uploads. Default: 4, capped at 10 (Graph API limits)
        `Position`: 6

    [fragment_size_mb]
        Target fragment size for resumable uploads in MiB. The actual size is
        the closest multiple of 320 KiB, between 320 KiB and 60 MiB. Default: 10
        `Position`: 7

    [simple_upload_small_files]
        Upload files under 4 MiB with a single request. Default: True
        `Position`: 8

    [file_pattern]
        Regular expression applied to entry names, as '/body/flags'
        (e.g. '/\\.(jpg|png)$/i'). Default: all entries
        `Position`: 9

    [exclude_patterns]
        Comma-separated glob exclusions (e.g. '*.tmp,__pycache__'). Default: none
        `Position`: 10

    [force_upload]
        Upload large files even when size and timestamps match. Default: False
        `Position`: 11

    [debug]
        Verbose output (session handling, fragments, retries). Default: False
        `Position`: 12

ENVIRONMENT:
    ONEDRIVE_TENANT          Authority tenant (default: common)
    ONEDRIVE_TOKEN_FILE      MSAL token cache file (default: token.json)
    ONEDRIVE_SESSION_DIR     Upload session records (default: <tmp>/onedrive)
    ONEDRIVE_LOGIN_ENDPOINT  Azure AD endpoint (default: login.microsoftonline.com)
    ONEDRIVE_GRAPH_ENDPOINT  Graph endpoint (default: graph.microsoft.com)
    ONEDRIVE_DRIVE_ROOT      Drive root item URL (default: https://<graph>/v1.0/me/drive/root)
    ONEDRIVE_REDIRECT_URI    Redirect URI used by the one-time sign-in (default: http://localhost:8080/callback)
    SHOW_PROGRESS            Periodic progress display (default: true)

SIGN-IN:
    Uploading to /me/drive needs a delegated token. Sign in once with
        python main.py login [client_id] [client_secret]
    (or the onedrive-login script); the MSAL cache is written to
    ONEDRIVE_TOKEN_FILE and refreshed silently on later runs. Without a
    signed-in account, set ONEDRIVE_DRIVE_ROOT to /drives/<drive-id>/root.

EXIT STATUS:
    0  All entries uploaded (or the run was interrupted with Ctrl+C)
    1  Configuration or authentication error, or at least one entry failed

EXAMPLES:
    python main.py login
    python main.py ./photos /Backup/Photos
    python main.py ./videos /Backup/Videos "" "" 5 2 20 True '/\\.mp4$/i'
"""

# ====================================
# IMPORTS
# ====================================

import os
import signal
import sys
import time

from dotenv import load_dotenv

from onedrive_uploader.auth import TokenProvider
from onedrive_uploader.chunking import compute_fragment_size
from onedrive_uploader.config import DEFAULT_REDIRECT_URI, parse_config
from onedrive_uploader.errors import AuthenticationError, FatalError
from onedrive_uploader.file_handler import parse_pattern
from onedrive_uploader.graph_api import GraphClient
from onedrive_uploader.monitoring import upload_stats, print_rate_limiting_summary
from onedrive_uploader.parallel_uploader import ParallelUploader
from onedrive_uploader.progress import ConsoleProgress
from onedrive_uploader.session_store import SessionStore
from onedrive_uploader.thread_utils import enable_thread_safe_print
from onedrive_uploader.uploader import UploadSessionManager
from onedrive_uploader.utils import is_debug_enabled, is_progress_enabled


def handle_interrupt(signum, frame):
    """Stop immediately on Ctrl+C. Persisted sessions let the next run resume."""
    print("\nInterrupted")
    sys.stdout.flush()
    # In-flight requests cannot be cancelled, so worker threads are not joined
    os._exit(0)


def print_section(title):
    print("\n" + "="*60)
    print(title)
    print("="*60)


def main():
    """
    Main execution function that orchestrates the upload.

    Process:
        1. Parse configuration and compute the fragment size
        2. Acquire a token
        3. Walk the source directory, enqueue folders then files, wait for drain
        4. Print summary statistics and exit with the appropriate code
    """
    try:
        config = parse_config()
    except IndexError:
        print("[Error] Missing required argument: source_path")
        print("Usage: python main.py <source_path> [destination_path] [client_id] [client_secret] ...")
        sys.exit(1)
    except ValueError as config_error:
        print(f"[Error] Invalid configuration: {config_error}")
        sys.exit(1)

    # Set environment variable for debug flag (enables existing debug checks in utils.py)
    if config.debug:
        os.environ['DEBUG'] = 'true'

    enable_thread_safe_print()
    signal.signal(signal.SIGINT, handle_interrupt)

    # ============================================================
    # [1/4] CONFIGURATION
    # ============================================================
    print_section("[1/4] CONFIGURATION")
    print(f"[*] Source:      {os.path.abspath(config.source_path)}")
    print(f"[*] Destination: {config.destination_path}")
    print(f"[✓] Parallel processing: {config.max_upload_workers} workers, {config.max_retry} retries per entry")

    if config.force_upload:
        print("[!] Force upload mode: Enabled (upload all files)")
    else:
        print("[✓] Smart sync mode: Enabled (skip unchanged large files)")

    if config.simple_upload_small_files:
        print("[✓] Single-request uploads for files under 4 MiB")

    if config.exclude_patterns_list:
        print(f"[=] Exclusion patterns: {', '.join(config.exclude_patterns_list)}")

    try:
        pattern = parse_pattern(config.file_pattern)
    except ValueError as pattern_error:
        print(f"[Error] {pattern_error}")
        sys.exit(1)
    if pattern is not None:
        print(f"[=] File pattern: {config.file_pattern}")

    fragment_size = compute_fragment_size(config.fragment_size_mb)
    print(f"[✓] Using fragment size of {fragment_size} bytes")

    # ============================================================
    # [2/4] AUTHENTICATION
    # ============================================================
    auth_start = time.time()
    print_section("[2/4] AUTHENTICATION")
    try:
        token_provider = TokenProvider(
            config.client_id, config.client_secret,
            tenant=config.tenant,
            login_endpoint=config.login_endpoint,
            graph_endpoint=config.graph_endpoint,
            token_file_path=config.token_file
        )
        token_provider.check_drive_access(config.drive_root)
        token_provider.get_valid_token()
    except AuthenticationError as auth_error:
        print(f"[Error] {auth_error}")
        sys.exit(1)
    print(f"[✓] Token acquired ({time.time() - auth_start:.3f}s)")
    if is_debug_enabled():
        print(f"[DEBUG] Drive root: {config.drive_root}")
        print(f"[DEBUG] Session records: {config.session_dir}")

    # ============================================================
    # [3/4] UPLOAD
    # ============================================================
    upload_start = time.time()
    print_section("[3/4] UPLOAD")

    progress = ConsoleProgress(config.max_upload_workers, render=is_progress_enabled())
    client = GraphClient(token_provider, config.drive_root, config.destination_path)
    manager = UploadSessionManager(
        client,
        SessionStore(config.session_dir),
        fragment_size,
        progress=progress,
        simple_upload_small_files=config.simple_upload_small_files,
        force_upload=config.force_upload
    )
    parallel_uploader = ParallelUploader(
        manager,
        max_workers=config.max_upload_workers,
        max_retry=config.max_retry
    )

    try:
        total_entries = parallel_uploader.process(
            config.source_path, pattern, config.exclude_patterns_list
        )
        print(f"[✓] Queued {total_entries} entries")
        failed_count = parallel_uploader.wait()
    except FatalError as fatal_error:
        print(f"[Error] Upload stopped: {fatal_error}")
        sys.exit(1)
    finally:
        progress.complete()

    print(f"\n[✓] Upload finished ({time.time() - upload_start:.3f}s)")

    # ============================================================
    # [4/4] SUMMARY
    # ============================================================
    print_section("[4/4] SUMMARY")
    upload_stats.print_summary(total_entries)
    print_rate_limiting_summary()

    if failed_count > 0:
        print(f"[!] {failed_count} entries failed to upload")
        sys.exit(1)

    if is_debug_enabled():
        print("[✓] All entries processed successfully")


def login(argv=None):
    """
    One-time sign-in that writes the MSAL token cache used by main().

    Arguments: [client_id] [client_secret], defaulting to the environment.
    """
    argv = sys.argv[1:] if argv is None else argv
    load_dotenv()
    client_id = (argv[0] if len(argv) > 0 and argv[0] else os.environ.get('ONEDRIVE_CLIENT_ID', ''))
    client_secret = (argv[1] if len(argv) > 1 and argv[1] else os.environ.get('ONEDRIVE_CLIENT_SECRET', ''))
    if not client_id or not client_secret:
        print("[Error] client_id and client_secret are required (arguments or ONEDRIVE_CLIENT_ID/SECRET)")
        sys.exit(1)

    print_section("SIGN-IN")
    token_provider = TokenProvider(
        client_id, client_secret,
        tenant=os.environ.get('ONEDRIVE_TENANT', 'common'),
        login_endpoint=os.environ.get('ONEDRIVE_LOGIN_ENDPOINT', 'login.microsoftonline.com'),
        graph_endpoint=os.environ.get('ONEDRIVE_GRAPH_ENDPOINT', 'graph.microsoft.com'),
        token_file_path=os.environ.get('ONEDRIVE_TOKEN_FILE', 'token.json')
    )
    try:
        token_provider.login(os.environ.get('ONEDRIVE_REDIRECT_URI', DEFAULT_REDIRECT_URI))
    except AuthenticationError as auth_error:
        print(f"[Error] {auth_error}")
        sys.exit(1)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "login":
        login(sys.argv[2:])
    else:
        main()
