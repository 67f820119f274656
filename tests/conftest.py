"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from relcache.catalog.auth import StaticTokenVerifier
from relcache.catalog.store import MemoryDocumentStore
from tests.fixtures.catalog_fixtures import ADMIN_TOKEN, EDITOR_TOKEN, fixed_clock, make_catalog


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment overrides out of test runs."""
    for name in (
        "RELCACHE_REVALIDATE_URL",
        "RELCACHE_DATABASE",
        "RELCACHE_TOKEN",
        "RELCACHE_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def store() -> MemoryDocumentStore:
    """In-memory store holding the consistent sample catalog."""
    return MemoryDocumentStore(make_catalog(), clock=fixed_clock)


@pytest.fixture
def verifier() -> StaticTokenVerifier:
    """Verifier accepting one admin and one non-admin token."""
    return StaticTokenVerifier(
        {
            ADMIN_TOKEN: {"uid": "alice", "role": "admin"},
            EDITOR_TOKEN: {"uid": "bob", "role": "editor"},
        }
    )
