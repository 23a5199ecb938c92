"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/*.

These tests exercise the full stack: middleware (CSRF, rate limit) -> captcha
gate -> UserStore -> TokenService -> cookies and response models.

Coverage:
  - register: 200 with default role, 409 on duplicate email, 400 on bad input;
    passwords are taken byte-exact (no stripping, no minimum beyond one char)
  - captcha: missing -> captcha_required, wrong -> captcha_invalid, single use
  - login: tokens in body and cookies, no-store, generic 401 on bad credentials
  - refresh: needs the refresh cookie and CSRF header, returns a new pair
  - logout: clears the auth and CSRF cookies
  - forgot/reset password: reset link emailed, reset token changes password
  - providers: public list of configured OAuth providers
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from auth.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from auth.models import CUSTOMER_ROLE
from auth.tokens import ACCESS_COOKIE, REFRESH, REFRESH_COOKIE
from conftest import COOKIE_DOMAIN, TEST_PASSWORD

REGISTER = "/api/v1/auth/register"
LOGIN = "/api/v1/auth/login"


def _register(client, captcha_fields, email: str, password: str = TEST_PASSWORD):
    return client.post(REGISTER, json={"email": email, "password": password, **captcha_fields()})


def _login(client, captcha_fields, email: str, password: str = TEST_PASSWORD):
    return client.post(LOGIN, json={"email": email, "password": password, **captcha_fields()})


class TestRegister:
    def test_register_creates_customer(self, client, api, captcha_fields) -> None:
        resp = _register(client, captcha_fields, "New.User@BlueInk.io")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["email"] == "new.user@blueink.io"
        roles = [r.name for r in api.user_store.get_user_roles(data["id"])]
        assert roles == [CUSTOMER_ROLE]

    def test_register_hashes_password(self, client, api, captcha_fields) -> None:
        resp = _register(client, captcha_fields, "hashed@blueink.io")
        user = api.user_store.get_by_id(resp.json()["id"])
        assert user.hashed_password.startswith("$2")
        assert TEST_PASSWORD not in user.hashed_password

    def test_duplicate_email_is_409(self, client, captcha_fields) -> None:
        assert _register(client, captcha_fields, "dupe@blueink.io").status_code == 200
        resp = _register(client, captcha_fields, "DUPE@blueink.io")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"

    def test_invalid_email_is_400(self, client, captcha_fields) -> None:
        resp = _register(client, captcha_fields, "not-an-email")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_single_character_password_is_accepted(self, client, api, captcha_fields) -> None:
        resp = _register(client, captcha_fields, "tiny@blueink.io", password="x")
        assert resp.status_code == 200, resp.text
        assert api.user_store.get_by_id(resp.json()["id"]).hashed_password.startswith("$2")

    def test_empty_password_is_400(self, client, captcha_fields) -> None:
        resp = _register(client, captcha_fields, "empty@blueink.io", password="")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_password_over_72_bytes_is_400(self, client, captcha_fields) -> None:
        resp = _register(client, captcha_fields, "long@blueink.io", password="€" * 30)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_too_long"


class TestCaptchaGate:
    def test_missing_captcha(self, client) -> None:
        resp = client.post(REGISTER, json={"email": "nocap@blueink.io", "password": TEST_PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "captcha_required"

    def test_wrong_captcha(self, client, api) -> None:
        cid = api.captcha_store.issue("ABCDE", ttl=300)
        resp = client.post(
            REGISTER,
            json={"email": "wrongcap@blueink.io", "password": TEST_PASSWORD, "captcha_id": cid, "captcha_answer": "XXXXX"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "captcha_invalid"
        assert api.user_store.get_by_email("wrongcap@blueink.io") is None

    def test_captcha_is_single_use(self, client, captcha_fields) -> None:
        fields = captcha_fields()
        first = client.post(REGISTER, json={"email": "once1@blueink.io", "password": TEST_PASSWORD, **fields})
        second = client.post(REGISTER, json={"email": "once2@blueink.io", "password": TEST_PASSWORD, **fields})
        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["error"]["code"] == "captcha_invalid"

    def test_login_requires_captcha(self, client) -> None:
        resp = client.post(LOGIN, json={"email": "x@blueink.io", "password": TEST_PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "captcha_required"


class TestLogin:
    def test_login_returns_tokens_and_cookies(self, client, api, captcha_fields, make_user) -> None:
        uid, _token = make_user("login-ok@blueink.io")
        resp = _login(client, captcha_fields, "login-ok@blueink.io")
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"

        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == int(api.token_service.access_ttl.total_seconds())
        assert api.token_service.validate(data["access_token"]) == uid
        assert api.token_service.validate(data["refresh_token"], kind=REFRESH) == uid

        jar = client.cookies
        assert jar.get(ACCESS_COOKIE, domain=COOKIE_DOMAIN) == data["access_token"]
        assert jar.get(REFRESH_COOKIE, domain=COOKIE_DOMAIN) == data["refresh_token"]
        assert jar.get(CSRF_COOKIE_NAME, domain=COOKIE_DOMAIN) == data["csrf_token"]

    def test_auth_cookies_are_httponly_csrf_cookie_is_not(self, client, captcha_fields, make_user) -> None:
        make_user("cookie-flags@blueink.io")
        resp = _login(client, captcha_fields, "cookie-flags@blueink.io")
        set_cookies = resp.headers.get_list("set-cookie")
        by_name = {h.split("=", 1)[0]: h.lower() for h in set_cookies}
        assert "httponly" in by_name[ACCESS_COOKIE]
        assert "httponly" in by_name[REFRESH_COOKIE]
        assert "httponly" not in by_name[CSRF_COOKIE_NAME]

    def test_login_email_is_case_insensitive(self, client, captcha_fields, make_user) -> None:
        make_user("mixed-case@blueink.io")
        assert _login(client, captcha_fields, "Mixed-Case@BlueInk.io").status_code == 200

    def test_wrong_password_and_unknown_email_look_the_same(self, client, captcha_fields, make_user) -> None:
        make_user("known@blueink.io")
        wrong = _login(client, captcha_fields, "known@blueink.io", password="wrong-password")
        unknown = _login(client, captcha_fields, "unknown@blueink.io")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"
        assert wrong.headers["cache-control"] == "no-store"

    def test_inactive_user_cannot_login(self, client, captcha_fields, make_user) -> None:
        make_user("disabled@blueink.io", active=False)
        assert _login(client, captcha_fields, "disabled@blueink.io").status_code == 401

    def test_cookie_session_reaches_protected_route(self, client, captcha_fields, make_user) -> None:
        make_user("cookie-session@blueink.io")
        _login(client, captcha_fields, "cookie-session@blueink.io")
        resp = client.get("/api/v1/role")
        assert resp.status_code == 200
        assert [r["name"] for r in resp.json()] == [CUSTOMER_ROLE]

    def test_register_then_login_end_to_end(self, client, captcha_fields) -> None:
        created = _register(client, captcha_fields, "a@b.com", password="x")
        assert created.status_code == 200, created.text
        assert created.json()["email"] == "a@b.com"
        assert _register(client, captcha_fields, "a@b.com", password="x").status_code == 409
        assert _login(client, captcha_fields, "a@b.com", password="y").status_code == 401
        resp = _login(client, captcha_fields, "a@b.com", password="x")
        assert resp.status_code == 200
        assert {"access_token", "refresh_token", "csrf_token"} <= set(resp.json())
        assert resp.json()["csrf_token"] == client.cookies.get(CSRF_COOKIE_NAME, domain=COOKIE_DOMAIN)
        me = client.get("/api/v1/users", headers={"Authorization": f"Bearer {resp.json()['access_token']}"})
        assert me.status_code == 200

    def test_password_whitespace_is_significant(self, client, captcha_fields) -> None:
        assert _register(client, captcha_fields, "  Spaced@BlueInk.io ", password=" pass word ").status_code == 200
        assert _login(client, captcha_fields, "spaced@blueink.io", password="pass word").status_code == 401
        assert _login(client, captcha_fields, "SPACED@blueink.io ", password=" pass word ").status_code == 200


class TestRefreshAndLogout:
    def test_refresh_issues_new_pair(self, client, api, captcha_fields, make_user) -> None:
        uid, _token = make_user("refresh@blueink.io")
        login = _login(client, captcha_fields, "refresh@blueink.io").json()

        resp = client.post("/api/v1/auth/refresh", headers={CSRF_HEADER_NAME: login["csrf_token"]})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert api.token_service.validate(data["access_token"]) == uid
        assert data["csrf_token"] != login["csrf_token"]
        assert client.cookies.get(CSRF_COOKIE_NAME, domain=COOKIE_DOMAIN) == data["csrf_token"]

    def test_refresh_requires_csrf_header(self, client, captcha_fields, make_user) -> None:
        make_user("refresh-csrf@blueink.io")
        _login(client, captcha_fields, "refresh-csrf@blueink.io")
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 403

    def test_refresh_without_cookie_is_401(self, client, auth_headers, make_user) -> None:
        _uid, token = make_user()
        headers = auth_headers(token)
        resp = client.post("/api/v1/auth/refresh", headers={CSRF_HEADER_NAME: headers[CSRF_HEADER_NAME]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "refresh_missing"

    def test_access_token_in_refresh_cookie_is_rejected(self, client, api, auth_headers, make_user) -> None:
        _uid, token = make_user()
        headers = auth_headers(token)
        client.cookies.set(REFRESH_COOKIE, token, domain=COOKIE_DOMAIN)
        resp = client.post("/api/v1/auth/refresh", headers={CSRF_HEADER_NAME: headers[CSRF_HEADER_NAME]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_logout_clears_cookies(self, client, captcha_fields, make_user) -> None:
        make_user("logout@blueink.io")
        login = _login(client, captcha_fields, "logout@blueink.io").json()
        resp = client.post("/api/v1/auth/logout", headers={CSRF_HEADER_NAME: login["csrf_token"]})
        assert resp.status_code == 200
        assert client.cookies.get(ACCESS_COOKIE, domain=COOKIE_DOMAIN) is None
        assert client.cookies.get(REFRESH_COOKIE, domain=COOKIE_DOMAIN) is None
        assert client.cookies.get(CSRF_COOKIE_NAME, domain=COOKIE_DOMAIN) is None
        assert client.get("/api/v1/role").status_code == 401


class TestPasswordReset:
    def test_forgot_password_emails_reset_link(self, client, api, captcha_fields, make_user) -> None:
        uid, _token = make_user("forgot@blueink.io")
        api.mailer.reset_mock()
        api.mailer.send_password_reset.return_value = True

        resp = client.post("/api/v1/auth/forgot-password", json={"email": "forgot@blueink.io", **captcha_fields()})
        assert resp.status_code == 200, resp.text

        api.mailer.send_password_reset.assert_called_once()
        to_email, reset_url, _minutes = api.mailer.send_password_reset.call_args.args
        assert to_email == "forgot@blueink.io"
        token = parse_qs(urlparse(reset_url).query)["token"][0]
        assert reset_url.startswith("http://localhost:3000/reset-password?token=")
        assert api.token_service.validate(token, kind="reset") == uid

    def test_forgot_password_unknown_email_is_404(self, client, captcha_fields) -> None:
        resp = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@blueink.io", **captcha_fields()})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "email_not_found"

    def test_forgot_password_mail_failure_is_500(self, client, api, captcha_fields, make_user) -> None:
        make_user("mailfail@blueink.io")
        api.mailer.send_password_reset.return_value = False
        try:
            resp = client.post("/api/v1/auth/forgot-password", json={"email": "mailfail@blueink.io", **captcha_fields()})
        finally:
            api.mailer.send_password_reset.return_value = True
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "email_failed"

    def test_reset_password_changes_password(self, client, api, captcha_fields, make_user) -> None:
        uid, _token = make_user("reset@blueink.io")
        reset_token = api.token_service.issue_reset_token(uid)

        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"token": reset_token, "new_password": "a-brand-new-password"},
        )
        assert resp.status_code == 200, resp.text
        assert _login(client, captcha_fields, "reset@blueink.io").status_code == 401
        assert _login(client, captcha_fields, "reset@blueink.io", password="a-brand-new-password").status_code == 200

    def test_reset_password_keeps_surrounding_whitespace(self, client, api, captcha_fields, make_user) -> None:
        uid, _token = make_user("reset-space@blueink.io")
        reset_token = api.token_service.issue_reset_token(uid)
        resp = client.post("/api/v1/auth/reset-password", json={"token": reset_token, "new_password": "newpassword "})
        assert resp.status_code == 200, resp.text
        assert _login(client, captcha_fields, "reset-space@blueink.io", password="newpassword ").status_code == 200
        assert _login(client, captcha_fields, "reset-space@blueink.io", password="newpassword").status_code == 401

    def test_access_token_cannot_reset_password(self, client, make_user) -> None:
        _uid, token = make_user()
        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": "whatever-123"})
        assert resp.status_code == 401


class TestProviders:
    def test_google_listed_when_configured(self, client) -> None:
        resp = client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert {"name": "google", "label": "Google"} in resp.json()
