import logging

import pytest
from fastapi.testclient import TestClient

from src.api import main
from src.api.coordinator import NavigationCoordinator
from src.api.protocol import MessageRouter
from src.config.logger import logger
from src.store.kv import MemoryStore
from src.store.state import StateRepository


class TestHttpApp:
    """HTTP経由のメッセージ処理"""

    @pytest.fixture
    def client(self, monkeypatch, tmp_path, clock):
        monkeypatch.setenv("FOCUSTUBE_SYNC_INTERVAL", "3600")
        monkeypatch.delenv("FOCUSTUBE_STATE_FILE", raising=False)
        with TestClient(main.app) as client:
            repo = StateRepository(MemoryStore())
            main.STATE["router"] = MessageRouter(NavigationCoordinator(repo, clock=clock))
            yield client

    def test_ping_with_tab_id(self, client):
        response = client.post("/messages", params={"tab_id": 12}, json={"type": "PING"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "from": "background", "tabId": 12}

    def test_navigated_updates_monitoring(self, client):
        response = client.post(
            "/messages",
            json={"type": "FT_NAVIGATED", "pageType": "SHORTS", "url": "https://y/shorts/1"},
        )
        body = response.json()
        assert body["blocked"] is True
        assert body["scope"] == "shorts"

        monitoring = client.get("/api/monitoring_data").json()
        assert monitoring["last_decision"]["reason"] == "strict_shorts"
        assert any("Navigation processed" in line for line in monitoring["logs"])

    def test_unknown_type(self, client):
        response = client.post("/messages", json={"type": "NOPE"})
        assert response.status_code == 200
        assert response.json() == {"ok": False, "error": "Unknown message type"}

    def test_status_returns_snapshot(self, client):
        client.post("/messages", json={"type": "SET_EMAIL", "email": "a@example.com"})
        body = client.get("/status").json()
        assert body["ok"] is True
        assert body["state"]["email"] == "a@example.com"


def test_startup_attaches_configured_log_file(monkeypatch, tmp_path):
    log_file = tmp_path / "service.log"
    monkeypatch.setenv("FOCUSTUBE_LOG_FILE", str(log_file))
    monkeypatch.setenv("FOCUSTUBE_SYNC_INTERVAL", "3600")
    monkeypatch.delenv("FOCUSTUBE_STATE_FILE", raising=False)
    try:
        with TestClient(main.app) as client:
            assert client.get("/api/monitoring_data").status_code == 200
        assert "Policy service started" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(
                log_file.resolve()
            ):
                logger.removeHandler(handler)
                handler.close()
