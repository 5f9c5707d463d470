# tests/test_service.py
"""Tests for the FastAPI service."""

import logging

import pytest
from fastapi.testclient import TestClient

from simplecfg import service
from simplecfg.config import DEFAULT_CONFIG
from simplecfg.service import AnalyzeRequest, create_app, serve, wants_category


@pytest.fixture
def client():
    return TestClient(create_app())


def post(client, **body):
    response = client.post("/analyze", json=body)
    assert response.status_code == 200
    return response.json()


class TestAnalyze:

    def test_notes_have_repo_relative_paths(self, client, copy_testdata):
        root = copy_testdata("NullableExamples.java")
        data = post(client, repo_root=str(root), file_paths=["NullableExamples.java"])
        assert data["failures"] == []
        notes = data["notes"]
        assert len(notes) == 5
        assert {n["location"]["path"] for n in notes} == {"NullableExamples.java"}
        assert [n["location"]["range"]["start_line"] for n in notes] == [5, 9, 30, 35, 40]
        assert notes[1]["fixes"][0]["replacements"][0]["path"] == "NullableExamples.java"
        assert all(n["category"] == "SimpleCFG" for n in notes)

    def test_failures_are_listed_next_to_notes(self, client, copy_testdata):
        root = copy_testdata("AlreadyClosedExamples.java", "Broken.java")
        data = post(client, repo_root=str(root),
                    file_paths=["Broken.java", "AlreadyClosedExamples.java"])
        assert len(data["notes"]) == 4
        (failure,) = data["failures"]
        assert failure["path"] == "Broken.java"
        assert failure["message"].startswith("Failed to analyze file Broken.java: ")

    def test_other_stages_get_nothing(self, client, copy_testdata):
        root = copy_testdata("NullableExamples.java")
        data = post(client, repo_root=str(root), file_paths=["NullableExamples.java"],
                    stage="POST_BUILD")
        assert data == {"notes": [], "failures": []}

    def test_other_categories_get_nothing(self, client, copy_testdata):
        root = copy_testdata("NullableExamples.java")
        data = post(client, repo_root=str(root), file_paths=["NullableExamples.java"],
                    categories=["Other"])
        assert data == {"notes": [], "failures": []}

    def test_matching_category(self, client, copy_testdata):
        root = copy_testdata("NullableExamples.java")
        data = post(client, repo_root=str(root), file_paths=["NullableExamples.java"],
                    categories=["Other", "SimpleCFG"])
        assert len(data["notes"]) == 5

    def test_invalid_request(self, client):
        response = client.post("/analyze", json={"file_paths": "not-a-list"})
        assert response.status_code == 422


class TestCategories:

    def test_categories(self, client):
        response = client.get("/categories")
        assert response.status_code == 200
        assert response.json() == {"categories": ["SimpleCFG"], "stage": "PRE_BUILD"}

    def test_wants_category(self):
        assert wants_category(AnalyzeRequest(), "SimpleCFG")
        assert wants_category(AnalyzeRequest(categories=["SimpleCFG"]), "SimpleCFG")
        assert not wants_category(AnalyzeRequest(categories=["X"]), "SimpleCFG")


class TestServe:

    def test_logs_port_and_runs_uvicorn(self, monkeypatch, caplog):
        calls = []
        monkeypatch.setattr(service.uvicorn, "run",
                            lambda app, **kwargs: calls.append((app, kwargs)))
        with caplog.at_level(logging.INFO, logger="simplecfg"):
            serve()
        assert "Starting SimpleCFG service at 10008" in caplog.messages
        ((app, kwargs),) = calls
        assert kwargs == {"host": DEFAULT_CONFIG.host, "port": 10008}

    def test_custom_port(self, monkeypatch, caplog):
        monkeypatch.setattr(service.uvicorn, "run", lambda app, **kwargs: None)
        with caplog.at_level(logging.INFO, logger="simplecfg"):
            serve(DEFAULT_CONFIG.with_options(port=9000))
        assert "Starting SimpleCFG service at 9000" in caplog.messages
