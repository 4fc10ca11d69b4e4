"""Shared fixtures: a throwaway sqlite store and an API client bound to it."""

import pytest

from owarai.db import Store


@pytest.fixture
def store(tmp_path):
    s = Store(str(tmp_path / "owarai.sqlite"))
    s.init_db()
    return s


@pytest.fixture
def competition(store):
    return store.create_competition("m1", 2025, "M-1 Grand Prix 2025", "secret")


@pytest.fixture
def client(store, monkeypatch):
    from fastapi.testclient import TestClient

    from owarai import main

    monkeypatch.setattr(main, "_store", store)
    with TestClient(main.app) as c:
        yield c
