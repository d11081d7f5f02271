from unittest.mock import patch

from conftest import register, upload
from health_routes import memory_status


def test_root_is_plain_text(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "LexiDocs backend is running"


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_test_gemini_uses_gateway(client, gateway):
    response = client.get("/test-gemini")
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_basic_health(client):
    data = client.get("/api/health").json()["data"]
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"


def test_comprehensive_health_is_healthy_when_every_probe_is(client):
    healthy = {"status": "healthy", "message": "ok"}
    with patch("health_routes.check_memory", return_value=healthy), \
            patch("health_routes.check_disk", return_value=healthy):
        data = client.get("/api/health/comprehensive").json()["data"]

    assert data["status"] == "healthy"
    assert set(data["checks"]) == {"database", "storage", "gemini", "system", "memory", "disk"}
    assert data["summary"]["unhealthy_checks"] == 0


def test_comprehensive_health_degrades_on_one_failure(client, gateway):
    gateway.test_connection = lambda: {"success": False, "message": "failed", "error": "API key not valid"}
    healthy = {"status": "healthy", "message": "ok"}
    with patch("health_routes.check_memory", return_value=healthy), \
            patch("health_routes.check_disk", return_value=healthy):
        data = client.get("/api/health/comprehensive").json()["data"]

    assert data["status"] == "degraded"
    assert data["unhealthy_services"] == ["gemini"]
    assert data["checks"]["gemini"]["error"] == "API key not valid"


def test_comprehensive_health_survives_a_crashing_probe(client):
    with patch("health_routes.check_system", side_effect=RuntimeError("psutil unavailable")):
        data = client.get("/api/health/comprehensive").json()["data"]

    assert data["checks"]["system"]["status"] == "unhealthy"
    assert data["checks"]["system"]["error"] == "psutil unavailable"
    assert data["status"] == "degraded"


def test_memory_thresholds():
    assert memory_status(50, 10) == "healthy"
    assert memory_status(85, 10) == "warning"
    assert memory_status(50, 95) == "critical"
    assert memory_status(80, 80) == "healthy"


def test_service_metrics_count_the_callers_rows(client):
    data = register(client)
    headers = {"Authorization": f"Bearer {data['token']}"}
    upload(client, headers)

    metrics = client.get("/api/health/metrics", headers=headers).json()["data"]

    assert metrics["user_metrics"]["documents"]["total"] == 1
    assert metrics["user_id"] == data["user"]["id"]
    assert client.get("/api/health/metrics").status_code == 401


def test_status_reports_database(client):
    data = client.get("/api/health/status").json()["data"]
    assert data["database"] == "operational"
