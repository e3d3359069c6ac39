"""Shared pytest fixtures for the poetry API test suite."""

import random
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from database import POEMS, USERS, MemoryStore


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    """Return an empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def rng():
    return random.Random(1234)


def couplets(*lines):
    return [{"couplet": line} for line in lines]


@pytest.fixture
def add_user(store):
    """Insert a user and return its id."""
    def _add(name="Reader", role="user", bookmarks=None, slug=None):
        return store.insert_one(USERS, {
            "name": name,
            "slug": slug,
            "role": role,
            "profilePicture": None,
            "bookmarks": bookmarks or [],
            "poemCount": 0,
        })
    return _add


@pytest.fixture
def add_poem(store):
    """Insert a poem and return its id. Content defaults to one English couplet."""
    def _add(
        poet=None,
        en=("An English couplet",),
        hi=(),
        ur=(),
        status="published",
        topics=(),
        title="Untitled",
        created_at=None,
        cover_image=None,
        category="ghazal",
    ):
        base = title.lower().replace(" ", "-")
        return store.insert_one(POEMS, {
            "title": {"en": title, "hi": title, "ur": title},
            "slug": {lang: f"{base}-{lang}" for lang in ("en", "hi", "ur")},
            "content": {"en": couplets(*en), "hi": couplets(*hi), "ur": couplets(*ur)},
            "poet": poet,
            "topics": list(topics),
            "category": category,
            "status": status,
            "coverImage": cover_image,
            "viewsCount": 0,
            "bookmarkCount": 0,
            "bookmarks": [],
            "createdAt": created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        })
    return _add


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(store):
    """TestClient wired to the in-memory store and a seeded random source."""
    from main import app, get_rng
    from database import get_store

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_rng] = lambda: random.Random(99)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    """Sign a session token the way the identity provider does."""
    from main import ALGORITHM, SECRET_KEY

    def _make(user_id, role="user", secret=None):
        return jwt.encode({"sub": user_id, "role": role}, secret or SECRET_KEY, algorithm=ALGORITHM)
    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id, role="user"):
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}
    return _headers
