from unittest.mock import patch

import config
import health


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "sqlite"
    assert body["auth"] == "jwt"
    assert body["environment"] == config.APP_ENV


def test_full_health_with_integrations_disabled(client):
    body = client.get("/api/health/full").json()
    components = body["components"]
    assert components["database"]["status"] == "ok"
    assert components["market_data"]["status"] == "disabled"
    assert components["billing"]["status"] == "disabled"
    assert components["storage"]["status"] == "disabled"
    assert "entries" in components["cache"]
    assert body["overall_status"] in ("ok", "warning")


def test_full_health_reports_missing_tables(db_engine, db_session):
    import models

    models.NotebookNote.__table__.drop(bind=db_engine)
    with patch("health.check_system_resources", return_value={"status": "ok"}):
        report = health.get_full_health(db_session)
    assert report["components"]["database"]["status"] == "warning"
    assert "notebook_notes" in report["components"]["database"]["message"]
    assert report["overall_status"] == "warning"


def test_market_data_failure_degrades(db_session):
    with patch("health.twelvedata_provider.check_connectivity", return_value={"status": "error", "message": "down"}), \
            patch("health.check_system_resources", return_value={"status": "ok"}):
        report = health.get_full_health(db_session)
    assert report["overall_status"] == "warning"


def test_system_resources_report_this_process():
    resources = health.check_system_resources()
    assert resources["status"] in ("ok", "warning")
    assert resources["process_rss_mb"] > 0
    assert resources["process_threads"] >= 1
    assert resources["uptime_s"] >= 0


def test_host_memory_pressure_warns():
    with patch("health.psutil.virtual_memory") as virtual_memory:
        virtual_memory.return_value.percent = 95.0
        resources = health.check_system_resources()
    assert resources["status"] == "warning"
    assert resources["host_memory_pct"] == 95.0
