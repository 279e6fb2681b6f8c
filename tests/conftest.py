"""Shared test fixtures and helpers for projgraph tests."""

import asyncio
import tempfile
from pathlib import Path

import pytest

from projgraph.config import Settings
from projgraph.service import MemoryService


# --- Fixtures ---


@pytest.fixture
def temp_project_dir():
    """Provide a temporary project root.

    Yields a Path to a temporary directory (with a README.md marker so it
    is recognized as a project root) that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir).resolve()
        (root / "README.md").write_text("# test project\n")
        yield root


@pytest.fixture
def fast_settings():
    """Settings with a short lock retry budget so contention tests stay fast."""
    return Settings(lock_retries=2, lock_min_backoff=0.01, lock_max_backoff=0.02)


@pytest.fixture
def service(fast_settings):
    """Provide a fresh MemoryService instance."""
    return MemoryService(fast_settings)


@pytest.fixture
def populated_project(service, temp_project_dir):
    """Provide a project root with sample entities and relations on disk.

    Returns the project path; the data was written through ``service``.
    """
    asyncio.run(service.add_entities(temp_project_dir, SAMPLE_ENTITIES))
    asyncio.run(service.create_relations(temp_project_dir, SAMPLE_RELATIONS))
    return temp_project_dir


# --- Helper Functions (not fixtures) ---


SAMPLE_ENTITIES = [
    {"name": "AuthServer", "entityType": "COMPONENT", "observations": ["Issues JWT tokens"]},
    {"name": "Database", "entityType": "COMPONENT", "observations": ["PostgreSQL 15"]},
    {"name": "LoginBug", "entityType": "BUG", "observations": ["Session expires early"]},
    {"name": "Redis", "entityType": "COMPONENT", "observations": ["Caches sessions"]},
]

SAMPLE_RELATIONS = [
    {"from": "AuthServer", "to": "Database", "relationType": "READS_FROM"},
    {"from": "AuthServer", "to": "Redis", "relationType": "CACHES_IN"},
    {"from": "LoginBug", "to": "AuthServer", "relationType": "AFFECTS"},
]
