# -*- coding: utf-8 -*-
"""
Microsoft authentication module for OneDrive uploads.

This module provides bearer tokens using MSAL (Microsoft Authentication Library).
Tokens are kept in an MSAL token cache persisted to a JSON file, so a cache
produced by an interactive sign-in is refreshed silently on later runs.
"""

import os
import threading
import urllib.parse

import msal
import requests

from .errors import AuthenticationError
from .utils import is_debug_enabled


def _report_auth_failure(result, login_endpoint, graph_endpoint):
    """
    Print troubleshooting output for an MSAL error result and raise.

    Args:
        result (dict): MSAL result without an access_token
        login_endpoint (str): Azure AD endpoint in use
        graph_endpoint (str): Graph endpoint in use

    Raises:
        AuthenticationError: Always
    """
    error_msg = result.get("error", "unknown_error")
    error_desc = result.get("error_description", "No description provided")
    error_codes = result.get("error_codes", [])

    print("[!] ========================================")
    print("[!] AUTHENTICATION FAILED")
    print("[!] ========================================")

    if "invalid_client" in error_msg or 7000215 in error_codes:
        print("[!] Error: Invalid client credentials")
        print("[!] ")
        print("[!] Troubleshooting steps:")
        print("[!]   1. Verify ONEDRIVE_CLIENT_ID is correct (check Azure AD app registration)")
        print("[!]   2. Verify ONEDRIVE_CLIENT_SECRET has no extra spaces and has not expired")
        print("[!]   3. Ensure ONEDRIVE_TENANT matches the app registration")
    elif "invalid_grant" in error_msg:
        print("[!] Error: Cached sign-in is no longer valid")
        print("[!] ")
        print("[!] Troubleshooting steps:")
        print("[!]   1. Sign in again to produce a fresh token cache file")
        print("[!]   2. Check that the refresh token was not revoked by an administrator")
    elif "invalid_scope" in error_msg:
        print("[!] Error: Invalid scope requested")
        print("[!] ")
        print("[!] Troubleshooting steps:")
        print(f"[!]   1. Verify Graph API endpoint is correct: {graph_endpoint}")
        print("[!]   2. For commercial cloud, use: graph.microsoft.com")
    else:
        print(f"[!] Error: {error_msg}")
        print("[!] ")
        print("[!] Common issues:")
        print("[!]   - Network connectivity problems")
        print(f"[!]   - Firewall blocking access to {login_endpoint}")
        print("[!]   - Incorrect tenant or endpoint configuration")
        if error_codes:
            print(f"[!]   Error codes: {error_codes}")

    print("[!] ")
    print(f"[!] Technical details: {error_desc}")
    print("[!] ========================================")
    raise AuthenticationError(f"Authentication failed: {error_msg} - {error_desc}")


class TokenProvider:
    """
    Supplies valid bearer tokens for Graph API requests.

    If the persisted token cache holds a signed-in account, its tokens are
    refreshed silently (delegated permissions, works with /me/drive). Otherwise
    the client credentials flow is used (application permissions), which only
    works against an explicit /drives/{id}/root drive root. login() performs
    the one-time authorization code sign-in that fills the cache.

    Example:
        provider = TokenProvider(client_id, client_secret, token_file_path='token.json')
        headers = {'Authorization': provider.get_valid_token()}
    """

    def __init__(self, client_id, client_secret, tenant='common',
                 login_endpoint='login.microsoftonline.com',
                 graph_endpoint='graph.microsoft.com',
                 token_file_path='token.json', app=None):
        """
        Args:
            client_id (str): Application (client) ID from Azure AD app registration
            client_secret (str): Client secret value from Azure AD app registration
            tenant (str): Tenant ID or 'common'
            login_endpoint (str): Azure AD authentication endpoint
            graph_endpoint (str): Microsoft Graph API endpoint
            token_file_path (str): Path of the persisted MSAL token cache
            app: Pre-built MSAL application (used by tests)
        """
        self.login_endpoint = login_endpoint
        self.graph_endpoint = graph_endpoint
        self.token_file_path = token_file_path
        self.delegated_scopes = [f"https://{graph_endpoint}/Files.ReadWrite.All"]
        self.app_scopes = [f"https://{graph_endpoint}/.default"]
        self._lock = threading.Lock()

        self._cache = msal.SerializableTokenCache()
        if token_file_path and os.path.exists(token_file_path):
            with open(token_file_path, 'r', encoding='utf-8') as f:
                self._cache.deserialize(f.read())

        if app is None:
            app = msal.ConfidentialClientApplication(
                client_id,
                authority=f'https://{login_endpoint}/{tenant}',
                client_credential=client_secret,
                token_cache=self._cache
            )
        self._app = app

    def _persist_cache(self):
        if self.token_file_path and self._cache.has_state_changed:
            with open(self.token_file_path, 'w', encoding='utf-8') as f:
                f.write(self._cache.serialize())
            if is_debug_enabled():
                print(f"[DEBUG] Token cache written to {self.token_file_path}")

    def has_account(self):
        """True when the token cache holds a signed-in (delegated) account."""
        with self._lock:
            return bool(self._app.get_accounts())

    def check_drive_access(self, drive_root):
        """
        Fail early when an app-only token would be used against /me.

        Graph rejects /me for client credentials tokens, so without a cached
        account the drive root has to name a drive explicitly.

        Args:
            drive_root (str): Item URL of the drive root

        Raises:
            AuthenticationError: If no account is cached and drive_root uses /me
        """
        if '/me/' in drive_root and not self.has_account():
            raise AuthenticationError(
                f"No signed-in account in {self.token_file_path}; app-only tokens cannot access {drive_root}. "
                "Run onedrive-login once, or set ONEDRIVE_DRIVE_ROOT to https://<graph>/v1.0/drives/<drive-id>/root"
            )

    def login(self, redirect_uri, read_redirect=input):
        """
        Sign in once with the authorization code flow and persist the token cache.

        The user opens the printed URL, signs in, and pastes the address the
        browser was redirected to (it carries the authorization code).

        Args:
            redirect_uri (str): Redirect URI registered for the app
            read_redirect: Function returning the pasted redirect URL

        Returns:
            str: Username of the signed-in account

        Raises:
            AuthenticationError: If the sign-in fails
        """
        flow = self._app.initiate_auth_code_flow(self.delegated_scopes, redirect_uri=redirect_uri)
        if "auth_uri" not in flow:
            _report_auth_failure(flow, self.login_endpoint, self.graph_endpoint)

        print("[*] Open this URL in a browser and sign in:")
        print(f"    {flow['auth_uri']}")
        redirected = read_redirect("[*] Paste the full address you were redirected to: ").strip()
        params = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(redirected).query))
        if "code" not in params and "error" not in params:
            raise AuthenticationError("Authorization error: Missing code parameter")

        with self._lock:
            try:
                result = self._app.acquire_token_by_auth_code_flow(flow, params)
            except ValueError as e:
                # msal raises ValueError when the state does not match the flow
                raise AuthenticationError(f"Authorization response rejected: {e}") from e
            except requests.exceptions.RequestException as e:
                raise AuthenticationError(f"Token request failed: {str(e)[:200]}") from e

            if "access_token" not in result:
                _report_auth_failure(result, self.login_endpoint, self.graph_endpoint)

            self._persist_cache()

        username = result.get("id_token_claims", {}).get("preferred_username", "unknown account")
        print(f"[✓] Signed in as {username}; token cache written to {self.token_file_path}")
        return username

    def get_valid_token(self):
        """
        Return an Authorization header value, refreshing the token if needed.

        Returns:
            str: 'Bearer <access token>'

        Raises:
            AuthenticationError: If no token can be obtained
        """
        with self._lock:
            try:
                accounts = self._app.get_accounts()
                if accounts:
                    result = self._app.acquire_token_silent(self.delegated_scopes, account=accounts[0])
                    if not result:
                        raise AuthenticationError(
                            "Cached sign-in could not be refreshed; sign in again to renew the token cache"
                        )
                else:
                    result = self._app.acquire_token_for_client(scopes=self.app_scopes)
            except requests.exceptions.RequestException as e:
                raise AuthenticationError(f"Token request failed: {str(e)[:200]}") from e

            if "access_token" not in result:
                _report_auth_failure(result, self.login_endpoint, self.graph_endpoint)

            self._persist_cache()
            return f"{result.get('token_type', 'Bearer')} {result['access_token']}"
