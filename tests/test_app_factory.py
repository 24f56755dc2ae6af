"""Tests for the app factory: lifespan wiring and correlation IDs."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from lardigital.api.factory import create_app
from lardigital.observability.correlation import CORRELATION_ID_HEADER

from .fakes import build_test_runtime


class TestCorrelationHeader:
    def test_incoming_id_is_echoed(self):
        client = TestClient(create_app(build_test_runtime(enabled=False)[0]))

        response = client.get("/health", headers={CORRELATION_ID_HEADER: "req-abc-123"})

        assert response.headers[CORRELATION_ID_HEADER] == "req-abc-123"

    def test_missing_id_is_generated(self):
        client = TestClient(create_app(build_test_runtime(enabled=False)[0]))

        response = client.get("/health")

        assert response.headers[CORRELATION_ID_HEADER]


class TestLifespan:
    def test_builds_runtime_from_environment_when_missing(self):
        runtime, _, _ = build_test_runtime(enabled=False)
        app = create_app()

        with patch("lardigital.api.factory.build_runtime", return_value=runtime) as build:
            with TestClient(app) as client:
                status = client.get("/api/whatsapp/status")

        build.assert_called_once_with()
        assert app.state.runtime is runtime
        assert status.status_code == 200
        assert status.json()["enabled"] is False

    def test_injected_runtime_is_kept(self):
        runtime, _, _ = build_test_runtime(enabled=False)
        app = create_app(runtime)

        with patch("lardigital.api.factory.build_runtime") as build:
            with TestClient(app):
                pass

        build.assert_not_called()
        assert app.state.runtime is runtime

    def test_enabled_runtime_connects_and_stops(self):
        runtime, _, _ = build_test_runtime()

        with TestClient(create_app(runtime)) as client:
            client.portal.call(runtime.supervisor.wait_until_settled)
            channel = runtime.supervisor.client
            assert runtime.supervisor.is_connected

        assert channel.destroyed is True
        assert runtime.supervisor.state == "disconnected"


class TestWithoutRuntime:
    def test_operator_routes_are_503(self):
        client = TestClient(create_app())

        assert client.get("/api/whatsapp/status").status_code == 503
        assert client.post("/api/whatsapp/reconnect").status_code == 503

    def test_health_still_answers(self):
        client = TestClient(create_app())

        assert client.get("/health").json() == {"status": "ok"}
