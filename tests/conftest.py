"""
Pytest configuration and fixtures.
"""
import json

import pytest

from livedeck.core import Settings
from livedeck.models.deck import Deck


SAMPLE_DOCUMENT = {
    "title": "Live Coding 101",
    "slides": [
        {
            "title": "Intro",
            "notes": "Say hello",
            "fragments": ["one", "two", {"content": "three"}],
        },
        {
            "title": "Demo",
            "code_blocks": [
                {"language": "sh", "source": "echo hello"},
                {"language": "sh", "source": "echo oops >&2; exit 1"},
                {"language": "sh", "source": "sleep 30"},
            ],
        },
        {
            "title": "Wrap-up",
            "fragments": ["a", "b"],
        },
    ],
}


@pytest.fixture(scope="session")
def test_data_dir(tmp_path_factory):
    """Create a shared test data directory."""
    return tmp_path_factory.mktemp("test_data")


@pytest.fixture
def clean_environment(monkeypatch):
    """Provide a clean environment for tests."""
    env_vars = [
        "LIVEDECK_DECK_PATH",
        "LIVEDECK_PORT",
        "LIVEDECK_DRIVERS",
        "DEBUG",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def deck_document():
    """A fresh copy of the sample deck document."""
    return json.loads(json.dumps(SAMPLE_DOCUMENT))


@pytest.fixture
def deck(deck_document):
    """Three slides: 3 fragments, no fragments with three code blocks, 2 fragments."""
    return Deck.from_document(deck_document)


@pytest.fixture
def deck_file(tmp_path, deck_document):
    """The sample deck written to disk."""
    path = tmp_path / "deck.json"
    path.write_text(json.dumps(deck_document), encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path, deck_file, clean_environment):
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        deck_path=deck_file,
        deck_watch=False,
        data_dir=tmp_path / "data",
        kill_grace_seconds=1.0,
    )
