"""Tests for orgauth.oauth.web_oauth."""

from __future__ import annotations

import base64
import hashlib
import http.client
import logging
import threading
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlencode, urlparse

import pytest

from orgauth.auth.credential_store import Credential, CredentialStore
from orgauth.config import ProjectConfig
from orgauth.env import Env
from orgauth.exceptions import (
    CallbackError,
    ExchangeError,
    InvalidRequestError,
    InvalidUsageError,
    StateValidationError,
)
from orgauth.models import OAuthConfig
from orgauth.oauth.web_oauth import WebOAuthServer, generate_pkce_pair
from orgauth.oauth.web_server import CallbackRequest, WebServer


def _make_server(exchanger=None, **config) -> WebOAuthServer:
    """A server on an ephemeral port with a short socket timeout."""
    return WebOAuthServer.create(
        OAuthConfig(**config),
        exchanger=exchanger or MagicMock(),
        env=Env({"ORGAUTH_HTTP_SOCKET_TIMEOUT": "5000"}),
        project=ProjectConfig({"oauthLocalPort": 0}),
    )


def _callback_request(server: WebOAuthServer, **overrides: str) -> CallbackRequest:
    url = server.get_authorization_url()
    state = parse_qs(urlparse(url).query)["state"][0]
    query = {"code": "abc123456", "state": state}
    query.update(overrides)
    return CallbackRequest("GET", "/OauthRedirect", {k: v for k, v in query.items() if v is not None})


def _mock_credential() -> MagicMock:
    credential = MagicMock()
    credential.get_front_door_url.return_value = "https://org.example.com/secur/frontdoor.jsp?sid=tok"
    return credential


class _Browser:
    """Follow the authorization URL's redirect target like a browser would."""

    def __init__(self, port: int, path: str) -> None:
        self.status: int | None = None
        self.location: str | None = None
        self.body = b""
        self._thread = threading.Thread(target=self._run, args=(port, path), daemon=True)
        self._thread.start()

    def _run(self, port: int, path: str) -> None:
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=10)
        try:
            conn.request("GET", path)
            resp = conn.getresponse()
            self.status = resp.status
            self.location = resp.getheader("Location")
            self.body = resp.read()
        finally:
            conn.close()

    def join(self) -> None:
        self._thread.join(timeout=10)


# ---------------------------------------------------------------------------
# Port selection
# ---------------------------------------------------------------------------


class TestDetermineOauthPort:
    def test_default_port(self) -> None:
        assert WebOAuthServer.determine_oauth_port(ProjectConfig({})) == 1717

    def test_configured_port(self) -> None:
        assert WebOAuthServer.determine_oauth_port(ProjectConfig({"oauthLocalPort": 8080})) == 8080

    def test_numeric_string(self) -> None:
        assert WebOAuthServer.determine_oauth_port(ProjectConfig({"oauthLocalPort": "8080"})) == 8080

    @pytest.mark.parametrize("value", ["eighty", -1, 70000, True, 12.5, None])
    def test_invalid_values_fall_back(self, value: object) -> None:
        assert WebOAuthServer.determine_oauth_port(ProjectConfig({"oauthLocalPort": value})) == 1717

    def test_invalid_value_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="orgauth"):
            WebOAuthServer.determine_oauth_port(ProjectConfig({"oauthLocalPort": "nope"}))
        assert "oauthLocalPort" in caplog.text

    def test_reads_project_file(self, isolated_config) -> None:
        (isolated_config / "orgauth-project.json").write_text('{"oauthLocalPort": 9090}')
        assert WebOAuthServer.determine_oauth_port() == 9090

    def test_create_uses_port(self) -> None:
        server = WebOAuthServer.create(project=ProjectConfig({"oauthLocalPort": 8123}))
        assert server.port == 8123
        assert server.oauth_config.redirect_uri == "http://localhost:8123/OauthRedirect"


# ---------------------------------------------------------------------------
# Authorization URL and state
# ---------------------------------------------------------------------------


class TestAuthorizationUrl:
    def test_url_contents(self) -> None:
        server = WebOAuthServer(port=1717)
        url = urlparse(server.get_authorization_url())
        params = parse_qs(url.query)

        assert f"{url.scheme}://{url.netloc}{url.path}" == (
            "https://login.salesforce.com/services/oauth2/authorize"
        )
        assert params["client_id"] == ["PlatformCLI"]
        assert params["response_type"] == ["code"]
        assert params["redirect_uri"] == ["http://localhost:1717/OauthRedirect"]
        assert params["scope"] == ["refresh_token api web"]
        assert params["code_challenge_method"] == ["S256"]
        assert len(params["state"][0]) == 64

    def test_state_stable_across_calls(self) -> None:
        server = WebOAuthServer(port=1717)
        assert server.get_authorization_url() == server.get_authorization_url()

    def test_state_differs_between_attempts(self) -> None:
        first = parse_qs(urlparse(WebOAuthServer().get_authorization_url()).query)["state"]
        second = parse_qs(urlparse(WebOAuthServer().get_authorization_url()).query)["state"]
        assert first != second

    def test_explicit_redirect_uri_kept(self) -> None:
        config = OAuthConfig(redirect_uri="http://localhost:1717/custom")
        server = WebOAuthServer(config)
        params = parse_qs(urlparse(server.get_authorization_url()).query)
        assert params["redirect_uri"] == ["http://localhost:1717/custom"]

    def test_no_pkce(self) -> None:
        server = WebOAuthServer(OAuthConfig(use_pkce=False))
        assert "code_challenge" not in server.get_authorization_url()

    def test_caller_config_not_mutated(self) -> None:
        config = OAuthConfig()
        WebOAuthServer(config, port=1717)
        assert config.redirect_uri is None

    def test_start_on_ephemeral_port_rewrites_redirect(self) -> None:
        server = _make_server()
        server.get_authorization_url()
        try:
            port = server.start()
            params = parse_qs(urlparse(server.get_authorization_url()).query)
            assert params["redirect_uri"] == [f"http://localhost:{port}/OauthRedirect"]
        finally:
            server.web_server.close()


class TestPkce:
    def test_challenge_matches_verifier(self) -> None:
        verifier, challenge = generate_pkce_pair()
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert 43 <= len(verifier) <= 128


class TestValidateState:
    def test_matching_state(self) -> None:
        server = WebOAuthServer()
        assert server.validate_state(_callback_request(server)) is True

    def test_mismatched_state(self) -> None:
        server = WebOAuthServer()
        assert server.validate_state(_callback_request(server, state="forged")) is False

    def test_missing_state(self) -> None:
        server = WebOAuthServer()
        assert server.validate_state(_callback_request(server, state=None)) is False

    def test_no_state_issued(self) -> None:
        server = WebOAuthServer()
        assert server.validate_state(CallbackRequest("GET", "/", {"state": "x"})) is False


class TestParseAuthCode:
    def test_returns_code(self) -> None:
        server = WebOAuthServer()
        response = MagicMock()
        assert server.parse_auth_code_from_request(response, _callback_request(server)) == "abc123456"
        response.send.assert_not_called()

    def test_state_mismatch_answers_400_and_closes(self) -> None:
        server = WebOAuthServer()
        request = _callback_request(server, state="forged")
        response = MagicMock()

        with patch.object(WebServer, "send_error") as send_error, patch.object(
            server, "close_request", wraps=server.close_request
        ) as close_request:
            assert server.parse_auth_code_from_request(response, request) is None

        assert close_request.call_count == 1
        assert send_error.call_count == 1
        assert send_error.call_args.args[0] == 400
        assert request.closed is True
        assert server.url_state_mismatch_attempt is True

    def test_state_mismatch_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        server = WebOAuthServer()
        request = _callback_request(server, state="forged")

        with patch.object(WebServer, "send_error"), caplog.at_level(logging.WARNING, logger="orgauth"):
            server.parse_auth_code_from_request(MagicMock(), request)

        assert "state did not match" in caplog.text

    def test_missing_code_answers_400(self) -> None:
        server = WebOAuthServer()
        request = _callback_request(server, code=None)

        with patch.object(WebServer, "send_error") as send_error:
            assert server.parse_auth_code_from_request(MagicMock(), request) is None

        send_error.assert_called_once()
        assert request.closed is True
        assert server.url_state_mismatch_attempt is False


# ---------------------------------------------------------------------------
# authorize_and_save
# ---------------------------------------------------------------------------


class TestAuthorizeAndSave:
    def test_requires_start(self) -> None:
        with pytest.raises(InvalidUsageError):
            WebOAuthServer().authorize_and_save()

    def test_success_saves_and_redirects(self) -> None:
        credential = _mock_credential()
        exchanger = MagicMock()
        exchanger.exchange.return_value = credential
        server = _make_server(exchanger)
        server.start()
        request = _callback_request(server)
        response = MagicMock()

        with patch.object(
            WebOAuthServer, "_execute_oauth_request", return_value=(request, response)
        ), patch.object(WebServer, "do_redirect") as do_redirect:
            assert server.authorize_and_save() is credential

        exchanger.exchange.assert_called_once()
        code, config, verifier = exchanger.exchange.call_args.args
        assert code == "abc123456"
        assert config.client_id == "PlatformCLI"
        assert verifier
        credential.save.assert_called_once()
        do_redirect.assert_called_once_with(
            303, "https://org.example.com/secur/frontdoor.jsp?sid=tok", response
        )
        assert server.web_server.is_listening is False

    def test_exchange_failure_reports_and_reraises(self) -> None:
        exchanger = MagicMock()
        exchanger.exchange.side_effect = ExchangeError("BAD ERROR")
        server = _make_server(exchanger)
        server.start()
        request = _callback_request(server)
        response = MagicMock()

        with patch.object(
            WebOAuthServer, "_execute_oauth_request", return_value=(request, response)
        ), patch.object(WebServer, "do_redirect") as do_redirect, patch.object(
            WebServer, "report_error"
        ) as report_error:
            with pytest.raises(ExchangeError, match="BAD ERROR"):
                server.authorize_and_save()

        assert report_error.call_count == 1
        assert str(report_error.call_args.args[0]) == "BAD ERROR"
        assert do_redirect.call_count == 0
        assert server.web_server.is_listening is False

    def test_unexpected_exchange_error_is_wrapped(self) -> None:
        exchanger = MagicMock()
        exchanger.exchange.side_effect = RuntimeError("socket exploded")
        server = _make_server(exchanger)
        server.start()
        request = _callback_request(server)

        with patch.object(
            WebOAuthServer, "_execute_oauth_request", return_value=(request, MagicMock())
        ), patch.object(WebServer, "report_error") as report_error:
            with pytest.raises(ExchangeError) as exc_info:
                server.authorize_and_save()

        assert exc_info.value.name == "ExchangeFailed"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert report_error.call_args.args[0] is exc_info.value

    def test_save_failure_reported(self) -> None:
        credential = _mock_credential()
        credential.save.side_effect = OSError("disk full")
        exchanger = MagicMock()
        exchanger.exchange.return_value = credential
        server = _make_server(exchanger)
        server.start()

        with patch.object(
            WebOAuthServer,
            "_execute_oauth_request",
            return_value=(_callback_request(server), MagicMock()),
        ), patch.object(WebServer, "report_error") as report_error, patch.object(
            WebServer, "do_redirect"
        ) as do_redirect:
            with pytest.raises(ExchangeError, match="disk full"):
                server.authorize_and_save()

        report_error.assert_called_once()
        do_redirect.assert_not_called()

    def test_state_mismatch_raises_without_exchange(self) -> None:
        exchanger = MagicMock()
        server = _make_server(exchanger)
        server.start()
        request = _callback_request(server, state="forged")

        with patch.object(
            WebOAuthServer, "_execute_oauth_request", return_value=(request, MagicMock())
        ), patch.object(WebServer, "send_error"):
            with pytest.raises(StateValidationError):
                server.authorize_and_save()

        exchanger.exchange.assert_not_called()
        assert server.web_server.is_listening is False


# ---------------------------------------------------------------------------
# End to end over loopback
# ---------------------------------------------------------------------------


class TestLoopback:
    def test_full_login(self, isolated_config) -> None:
        credential = Credential(
            access_token="00Dxx!token",
            instance_url="https://acme.my.salesforce.com",
            username="user@example.com",
        )
        exchanger = MagicMock()
        exchanger.exchange.return_value = credential
        server = _make_server(exchanger)

        urls: list[str] = []
        browser: list[_Browser] = []

        def open_url(url: str) -> None:
            urls.append(url)
            state = parse_qs(urlparse(url).query)["state"][0]
            browser.append(
                _Browser(server.port, "/OauthRedirect?" + urlencode({"code": "c0de", "state": state}))
            )

        result = server.login(open_browser=False, on_url=open_url)
        browser[0].join()

        assert result is credential
        assert browser[0].status == 303
        assert browser[0].location == credential.get_front_door_url()
        stored = CredentialStore("user@example.com").path.read_text(encoding="utf-8")
        assert Credential.model_validate_json(stored) == credential
        assert exchanger.exchange.call_args.args[0] == "c0de"
        assert server.web_server.is_listening is False

    def test_provider_error(self) -> None:
        server = _make_server()
        server.start()
        browser = _Browser(
            server.port,
            "/OauthRedirect?" + urlencode({"error": "access_denied", "error_description": "end-user denied"}),
        )

        with pytest.raises(CallbackError) as exc_info:
            server.authorize_and_save()
        browser.join()

        assert exc_info.value.name == "access_denied"
        assert str(exc_info.value) == "end-user denied"
        assert browser.status == 500
        assert b"end-user denied" in browser.body

    def test_wrong_path_gets_404(self) -> None:
        server = _make_server()
        server.start()
        browser = _Browser(server.port, "/favicon.ico")

        with pytest.raises(InvalidRequestError):
            server.authorize_and_save()
        browser.join()

        assert browser.status == 404
        assert server.web_server.is_listening is False

    def test_state_mismatch_gets_400(self) -> None:
        server = _make_server()
        server.start()
        server.get_authorization_url()
        browser = _Browser(server.port, "/OauthRedirect?code=c0de&state=forged")

        with pytest.raises(StateValidationError):
            server.authorize_and_save()
        browser.join()

        assert browser.status == 400
