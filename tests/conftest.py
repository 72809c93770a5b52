from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from catalog import CatalogStore, Saved
from server import app, get_store


def _reset_store_singleton() -> None:
    if hasattr(get_store, "_instance"):
        instance = getattr(get_store, "_instance")
        if isinstance(instance, CatalogStore):
            instance.close()
        delattr(get_store, "_instance")


@pytest.fixture
def store(tmp_path: Path) -> CatalogStore:
    _reset_store_singleton()
    test_store = CatalogStore(db_path=tmp_path / "library.db")
    app.dependency_overrides[get_store] = lambda: test_store
    yield test_store
    test_store.close()
    app.dependency_overrides.pop(get_store, None)
    _reset_store_singleton()


@pytest.fixture
def client(store: CatalogStore) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def add_book(
    store: CatalogStore,
    *,
    title: str,
    author: str = "Unknown",
    genre: str = "",
    year: object = None,
) -> int:
    outcome = store.create_book({"title": title, "author": author, "genre": genre, "year": year})
    assert isinstance(outcome, Saved)
    return outcome.book.id
