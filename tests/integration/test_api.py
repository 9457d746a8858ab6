"""End-to-end tests through the HTTP surface with the browser and DNS faked."""

import pytest
from fastapi.testclient import TestClient

from core.container import container
from main import app

ADMIN = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def client(settings, renderer, extractor, resolver):
    with container.settings.override(settings), \
            container.renderer.override(renderer), \
            container.extractor.override(extractor), \
            container.dns_resolver.override(resolver):
        container.reset_singletons()
        with TestClient(app) as test_client:
            yield test_client
    container.reset_singletons()


@pytest.fixture
def api_key(client):
    response = client.post("/auth/create-key", json={"name": "integration"}, headers=ADMIN)
    assert response.status_code == 200
    return response.json()["apiKey"]


@pytest.fixture
def bearer(client, api_key):
    response = client.post("/auth/token", headers={"X-API-Key": api_key})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


class TestAuthEndpoints:

    def test_create_key_requires_admin_secret(self, client):
        assert client.post("/auth/create-key", json={"name": "x"}).status_code == 403
        response = client.post("/auth/create-key", json={"name": "x"},
                               headers={"X-Admin-Key": "wrong"})
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_create_key(self, client):
        response = client.post("/auth/create-key", json={"name": "foo"}, headers=ADMIN)
        body = response.json()
        assert body["apiKey"] == body["record"]["id"]
        assert body["record"]["name"] == "foo"
        assert isinstance(body["record"]["createdAt"], int)

    def test_create_key_without_body(self, client):
        response = client.post("/auth/create-key", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["record"]["name"] == "unnamed"

    def test_token_from_body(self, client, api_key, settings):
        response = client.post("/auth/token", json={"apiKey": api_key})
        assert response.status_code == 200
        assert response.json()["expires_in"] == settings.jwt_ttl_seconds

    def test_token_without_key(self, client):
        response = client.post("/auth/token")
        assert response.status_code == 400
        assert response.json()["message"] == "missing api key"

    def test_token_for_unknown_key(self, client):
        response = client.post("/auth/token", headers={"X-API-Key": "unknown"})
        assert response.status_code == 401
        assert response.json()["message"] == "invalid api key"


class TestRenderEndpoint:

    def test_render_and_fetch_image(self, client, bearer, renderer):
        response = client.post("/render", json={"url": "https://example.com"}, headers=bearer)

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "T"
        assert body["text"] == "hi"
        assert body["articleHtml"] == "<p>hi</p>"
        assert body["imageUrl"].endswith("/image/" + body["imageToken"])

        image = client.get(body["imageUrl"])
        assert image.status_code == 200
        assert image.headers["content-type"] == "image/png"
        assert image.content == renderer.page.screenshot

    def test_raw_api_key_is_accepted(self, client, api_key):
        response = client.post("/render", json={"url": "https://example.com"},
                               headers={"X-API-Key": api_key})
        assert response.status_code == 200

    def test_repeated_render_is_served_from_cache(self, client, bearer, renderer):
        first = client.post("/render", json={"url": "https://example.com"}, headers=bearer)
        second = client.post("/render", json={"url": "https://example.com"}, headers=bearer)

        assert first.content == second.content
        assert len(renderer.calls) == 1

    def test_missing_credential(self, client):
        response = client.post("/render", json={"url": "https://example.com"})
        assert response.status_code == 401
        assert response.json() == {"error": "auth_error", "message": "missing credential"}

    def test_forged_token(self, client):
        response = client.post("/render", json={"url": "https://example.com"},
                               headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401
        assert response.json()["message"] == "invalid token"

    def test_unsupported_protocol(self, client, bearer, renderer):
        response = client.post("/render", json={"url": "ftp://example.com/file"}, headers=bearer)
        assert response.status_code == 400
        assert response.json()["message"] == "unsupported protocol"
        assert renderer.calls == []

    def test_missing_url(self, client, bearer):
        response = client.post("/render", json={}, headers=bearer)
        assert response.status_code == 400
        assert response.json()["message"] == "missing url"

    def test_malformed_body(self, client, bearer):
        response = client.post("/render", json={"url": 42}, headers=bearer)
        assert response.status_code == 400
        assert response.json()["message"] == "malformed request body"

    def test_invalid_json(self, client, bearer):
        response = client.post("/render", content=b"{not json",
                               headers={**bearer, "Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_body_is_not_inspected_before_auth(self, client):
        response = client.post("/render", json={"url": 42})
        assert response.status_code == 401
        assert response.json()["message"] == "missing credential"

    def test_backslash_in_authority_is_rejected(self, client, bearer, resolver, renderer):
        response = client.post("/render", json={"url": "http://127.0.0.1\\@example.com/"},
                               headers=bearer)
        assert response.status_code == 400
        assert response.json()["message"] == "invalid url"
        assert resolver.calls == []
        assert renderer.calls == []

    def test_loopback_target_is_rejected(self, client, bearer, resolver, renderer):
        resolver.add("127.0.0.1", ipv4=["127.0.0.1"])
        response = client.post("/render", json={"url": "http://127.0.0.1:8080/"}, headers=bearer)

        assert response.status_code == 403
        assert response.json()["error"] == "ssrf_rejected"
        assert renderer.calls == []

    def test_unresolvable_target_is_rejected(self, client, bearer):
        response = client.post("/render", json={"url": "https://nxdomain.test/"}, headers=bearer)
        assert response.status_code == 403

    def test_render_failure(self, client, bearer, renderer):
        from core.exceptions import RenderError
        renderer.error = RenderError("render failed", detail="navigation timeout")

        response = client.post("/render", json={"url": "https://example.com"}, headers=bearer)
        assert response.status_code == 500
        assert response.json()["error"] == "render_failed"

    def test_unknown_image(self, client):
        assert client.get("/image/" + "0" * 64).status_code == 404
        assert client.get("/image/nope").status_code == 404


class TestCrossCutting:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["backend"] == "memory"
        assert body["checks"]["cache"] is True

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"

    def test_rate_limit(self, client, settings):
        settings.rate_limit_per_min = 2

        statuses = [client.post("/auth/token").status_code for _ in range(3)]

        assert statuses == [400, 400, 429]
        limited = client.post("/auth/token")
        assert limited.json()["error"] == "rate_limited"
        assert int(limited.headers["Retry-After"]) > 0

    def test_health_is_not_rate_limited(self, client, settings):
        settings.rate_limit_per_min = 1
        assert all(client.get("/health").status_code == 200 for _ in range(3))

    def test_oversized_body(self, client, settings):
        settings.max_body_bytes = 1024
        response = client.post("/render", content=b"x" * 4096,
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 413

    def test_oversized_chunked_body(self, client, settings):
        settings.max_body_bytes = 1024
        chunks = (b"x" * 1024 for _ in range(8))
        response = client.post("/auth/create-key", content=chunks, headers=ADMIN)
        assert response.status_code == 413
        assert response.json()["error"] == "payload_too_large"

    def test_oversized_chunked_render_body(self, client, settings, bearer, renderer):
        settings.max_body_bytes = 1024
        chunks = (b"x" * 1024 for _ in range(8))
        response = client.post("/render", content=chunks, headers=bearer)
        assert response.status_code == 413
        assert renderer.calls == []
