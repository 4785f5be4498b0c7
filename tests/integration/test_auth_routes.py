"""Integration tests for sign-up, sign-in, sign-out and username checks."""

from fastapi.testclient import TestClient

SESSION_COOKIE = "sb-test-auth-token"

SIGNUP = {
    "email": "bob@example.com",
    "password": "password123",
    "username": "bob_builder",
    "full_name": "Bob Builder",
}


class TestSignup:
    """Tests for POST /auth/signup."""

    def test_creates_account_profile_and_session(self, client: TestClient, profile_store) -> None:
        response = client.post("/auth/signup", json=SIGNUP)

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["username"] == "bob_builder"
        assert data["should_redirect"] is True
        assert profile_store.rows[data["user_id"]]["full_name"] == "Bob Builder"
        assert client.cookies.get(SESSION_COOKIE)

    def test_session_opens_dashboard(self, client: TestClient) -> None:
        client.post("/auth/signup", json=SIGNUP)

        response = client.get("/dashboard")

        assert response.status_code == 200
        assert response.json()["profile"]["username"] == "bob_builder"

    def test_taken_username_is_conflict(self, signed_in_client: TestClient, identity_service) -> None:
        response = signed_in_client.post("/auth/signup", json={**SIGNUP, "username": "alice"})

        assert response.status_code == 409
        assert response.json()["error"] == "username_taken"
        assert len(identity_service.users) == 1

    def test_malformed_username_is_rejected(self, client: TestClient) -> None:
        response = client.post("/auth/signup", json={**SIGNUP, "username": "bob builder!"})

        assert response.status_code == 422

    def test_short_password_is_rejected(self, client: TestClient) -> None:
        response = client.post("/auth/signup", json={**SIGNUP, "password": "short"})

        assert response.status_code == 422

    def test_provisioning_failure(self, client: TestClient, profile_store) -> None:
        profile_store.fail_creates = True

        response = client.post("/auth/signup", json=SIGNUP)

        assert response.status_code == 500
        assert response.json()["error"] == "provisioning_failed"

    def test_identity_outage_is_retryable(self, client: TestClient, identity_service) -> None:
        identity_service.unavailable = True

        response = client.post("/auth/signup", json=SIGNUP)

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"


class TestLogin:
    """Tests for POST /auth/login."""

    def test_returns_tokens_and_sets_cookie(self, signed_in_client: TestClient) -> None:
        signed_in_client.cookies.clear()

        response = signed_in_client.post(
            "/auth/login", json={"email": "alice@example.com", "password": "password123"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "alice"
        assert data["email"] == "alice@example.com"
        assert data["access_token"] == signed_in_client.cookies.get(SESSION_COOKIE)

    def test_wrong_password(self, signed_in_client: TestClient) -> None:
        signed_in_client.cookies.clear()

        response = signed_in_client.post(
            "/auth/login", json={"email": "alice@example.com", "password": "not-the-password"}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_error"

    def test_profile_store_outage_is_retryable(self, signed_in_client: TestClient, profile_store) -> None:
        signed_in_client.cookies.clear()
        profile_store.unavailable = True

        response = signed_in_client.post(
            "/auth/login", json={"email": "alice@example.com", "password": "password123"}
        )

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"
        assert response.headers["retry-after"] == "5"


class TestLogout:
    """Tests for POST /auth/logout."""

    def test_clears_session(self, signed_in_client: TestClient, identity_service) -> None:
        response = signed_in_client.post("/auth/logout")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert identity_service.sessions == {}
        assert signed_in_client.get("/dashboard").status_code == 307

    def test_clears_cookies_when_backend_fails(self, signed_in_client: TestClient, identity_service) -> None:
        identity_service.sign_out_fails = True

        response = signed_in_client.post("/auth/logout")

        assert response.status_code == 200
        assert signed_in_client.cookies.get(SESSION_COOKIE) is None
        assert signed_in_client.get("/dashboard").status_code == 307


class TestUsernameAvailability:
    """Tests for GET /auth/username-availability."""

    def test_available(self, client: TestClient) -> None:
        response = client.get("/auth/username-availability", params={"username": "fresh_name"})

        assert response.status_code == 200
        assert response.json() == {"available": True, "message": "Username is available"}

    def test_taken(self, signed_in_client: TestClient) -> None:
        response = signed_in_client.get("/auth/username-availability", params={"username": "alice"})

        assert response.json()["available"] is False

    def test_malformed(self, client: TestClient) -> None:
        response = client.get("/auth/username-availability", params={"username": "a"})

        assert response.status_code == 200
        assert response.json()["available"] is False
