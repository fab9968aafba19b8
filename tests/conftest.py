from pathlib import Path

import pytest

from domains.organizing.engine import OrganizingEngine
from tests.fakes import FakeClassifier, FakeWatcher


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def engine(classifier):
    FakeWatcher.instances = []
    engine = OrganizingEngine(
        classifier=classifier,
        debounce_interval=0.0,
        cooldown_seconds=60.0,
        watcher_factory=FakeWatcher,
    )
    yield engine
    engine.shutdown()


@pytest.fixture
def watched_root(tmp_path) -> Path:
    root = tmp_path / "inbox"
    root.mkdir()
    return root
