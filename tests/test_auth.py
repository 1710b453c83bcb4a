import pytest
import requests

from onedrive_uploader.auth import TokenProvider
from onedrive_uploader.errors import AuthenticationError


class FakeApp:
    def __init__(self, accounts=(), silent=None, client=None, error=None, code_result=None):
        self.accounts = list(accounts)
        self.silent = silent
        self.client = client
        self.error = error
        self.code_result = code_result
        self.calls = []

    def get_accounts(self):
        if self.error is not None:
            raise self.error
        return self.accounts

    def acquire_token_silent(self, scopes, account=None):
        self.calls.append(("silent", scopes, account))
        return self.silent

    def acquire_token_for_client(self, scopes=None):
        self.calls.append(("client", scopes))
        return self.client

    def initiate_auth_code_flow(self, scopes, redirect_uri=None):
        self.calls.append(("initiate", scopes, redirect_uri))
        return {"auth_uri": "https://login.example.com/authorize?state=s1", "state": "s1"}

    def acquire_token_by_auth_code_flow(self, flow, params):
        self.calls.append(("redeem", params))
        if params.get("state") != flow["state"]:
            raise ValueError("state mismatch")
        return self.code_result


def _provider(app, tmp_path):
    return TokenProvider("id", "secret", token_file_path=str(tmp_path / "token.json"), app=app)


def test_client_credentials_without_cached_account(tmp_path):
    app = FakeApp(client={"access_token": "abc", "token_type": "Bearer"})

    assert _provider(app, tmp_path).get_valid_token() == "Bearer abc"
    assert app.calls == [("client", ["https://graph.microsoft.com/.default"])]


def test_cached_account_is_refreshed_silently(tmp_path):
    account = {"username": "user@example.com"}
    app = FakeApp(accounts=[account], silent={"access_token": "xyz"})

    assert _provider(app, tmp_path).get_valid_token() == "Bearer xyz"
    assert app.calls == [("silent", ["https://graph.microsoft.com/Files.ReadWrite.All"], account)]


def test_failed_silent_refresh_is_fatal(tmp_path):
    app = FakeApp(accounts=[{"username": "user@example.com"}], silent=None)

    with pytest.raises(AuthenticationError):
        _provider(app, tmp_path).get_valid_token()


def test_error_result_is_reported(tmp_path, capsys):
    app = FakeApp(client={"error": "invalid_client", "error_description": "bad secret"})

    with pytest.raises(AuthenticationError, match="invalid_client"):
        _provider(app, tmp_path).get_valid_token()
    assert "Invalid client credentials" in capsys.readouterr().out


def test_network_failure_is_fatal(tmp_path):
    app = FakeApp(error=requests.exceptions.ConnectionError("no route"))

    with pytest.raises(AuthenticationError, match="Token request failed"):
        _provider(app, tmp_path).get_valid_token()


def test_app_only_token_cannot_use_me_drive(tmp_path):
    provider = _provider(FakeApp(client={"access_token": "abc"}), tmp_path)

    with pytest.raises(AuthenticationError, match="onedrive-login"):
        provider.check_drive_access("https://graph.microsoft.com/v1.0/me/drive/root")

    provider.check_drive_access("https://graph.microsoft.com/v1.0/drives/b!abc/root")


def test_signed_in_account_can_use_me_drive(tmp_path):
    provider = _provider(FakeApp(accounts=[{"username": "user@example.com"}]), tmp_path)

    provider.check_drive_access("https://graph.microsoft.com/v1.0/me/drive/root")


def test_login_redeems_the_pasted_redirect(tmp_path, capsys):
    app = FakeApp(code_result={"access_token": "abc",
                               "id_token_claims": {"preferred_username": "user@example.com"}})
    provider = _provider(app, tmp_path)

    username = provider.login(
        "http://localhost:8080/callback",
        read_redirect=lambda prompt: "http://localhost:8080/callback?code=c1&state=s1\n",
    )

    assert username == "user@example.com"
    assert app.calls == [
        ("initiate", ["https://graph.microsoft.com/Files.ReadWrite.All"], "http://localhost:8080/callback"),
        ("redeem", {"code": "c1", "state": "s1"}),
    ]
    assert "https://login.example.com/authorize?state=s1" in capsys.readouterr().out


def test_login_without_code_fails(tmp_path):
    provider = _provider(FakeApp(), tmp_path)

    with pytest.raises(AuthenticationError, match="Missing code"):
        provider.login("http://localhost:8080/callback", read_redirect=lambda prompt: "http://localhost:8080/callback")


def test_login_with_mismatched_state_fails(tmp_path):
    provider = _provider(FakeApp(code_result={"access_token": "abc"}), tmp_path)

    with pytest.raises(AuthenticationError, match="rejected"):
        provider.login("http://localhost:8080/callback",
                       read_redirect=lambda prompt: "http://localhost:8080/callback?code=c1&state=other")
