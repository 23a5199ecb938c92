"""Tests for auth/csrf.py and the csrf_protect middleware.

Covers:
- safe methods and pre-auth paths are never checked
- missing cookie, missing header and mismatch are all rejected
- the cookie is never accepted as a stand-in for the header
- end to end: a mutating request with a bearer token still needs the header
"""

from __future__ import annotations

import pytest

from auth.csrf import CSRF_HEADER_NAME, CSRFRejected, check_csrf, generate_csrf_token


class TestCheckCsrf:
    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS", "get"])
    def test_safe_methods_pass_without_tokens(self, method: str) -> None:
        check_csrf(method, "/api/v1/users", None, None)

    @pytest.mark.parametrize(
        "path",
        ["/api/v1/auth/login", "/api/v1/auth/register", "/api/v1/auth/forgot-password", "/api/v1/auth/reset-password"],
    )
    def test_pre_auth_paths_exempt(self, path: str) -> None:
        check_csrf("POST", path, None, None)

    def test_matching_tokens_pass(self) -> None:
        token = generate_csrf_token()
        check_csrf("POST", "/api/v1/users", token, token)

    def test_missing_cookie_rejected(self) -> None:
        with pytest.raises(CSRFRejected) as exc_info:
            check_csrf("POST", "/api/v1/users", None, generate_csrf_token())
        assert exc_info.value.code == "csrf_missing"

    def test_missing_header_rejected(self) -> None:
        with pytest.raises(CSRFRejected) as exc_info:
            check_csrf("DELETE", "/api/v1/users/1", generate_csrf_token(), None)
        assert exc_info.value.code == "csrf_missing"

    def test_mismatch_rejected(self) -> None:
        with pytest.raises(CSRFRejected) as exc_info:
            check_csrf("PUT", "/api/v1/users/1", generate_csrf_token(), generate_csrf_token())
        assert exc_info.value.code == "csrf_mismatch"

    def test_non_ascii_header_rejected_not_crashing(self) -> None:
        with pytest.raises(CSRFRejected):
            check_csrf("POST", "/api/v1/users", "abc", "ábc")

    def test_tokens_are_64_hex_chars(self) -> None:
        token = generate_csrf_token()
        assert len(token) == 64
        int(token, 16)
        assert token != generate_csrf_token()

    def test_rejection_is_a_403(self) -> None:
        assert CSRFRejected().status_code == 403


class TestCsrfMiddleware:
    def test_post_without_csrf_header_is_403(self, client, make_user) -> None:
        _uid, token = make_user(admin=True)
        resp = client.post(
            "/api/v1/roles",
            json={"name": "no-csrf"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "csrf_missing"

    def test_post_with_mismatched_header_is_403(self, client, make_user, auth_headers) -> None:
        _uid, token = make_user(admin=True)
        headers = auth_headers(token)
        headers[CSRF_HEADER_NAME] = generate_csrf_token()
        resp = client.post("/api/v1/roles", json={"name": "bad-csrf"}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "csrf_mismatch"

    def test_post_with_matching_header_passes(self, client, make_user, auth_headers) -> None:
        _uid, token = make_user(admin=True)
        resp = client.post("/api/v1/roles", json={"name": "good-csrf"}, headers=auth_headers(token))
        assert resp.status_code == 201, resp.text

    def test_get_needs_no_csrf(self, client, make_user) -> None:
        _uid, token = make_user()
        resp = client.get("/api/v1/users", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
