# Ensures project root is importable for tests (so 'data', 'models', etc. can be imported)
import copy
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.config_loader import IndexSettings
from data.backend import InMemoryBackend
from data.prompt_index import PromptIndex


SAMPLE = [
    {"id": "1", "title": "Foo", "content": "write a haiku", "tags": ["x"], "folder": "Work",
     "created_at": "2024-03-02T10:00:00+00:00"},
    {"id": "2", "title": "Bar", "content": "summarize the text", "tags": ["y"], "folder": "Life",
     "created_at": "2024-03-01T10:00:00+00:00"},
]


@pytest.fixture
def sample():
    return copy.deepcopy(SAMPLE)


@pytest.fixture
def settings():
    return IndexSettings()


@pytest.fixture
def backend():
    return InMemoryBackend(SAMPLE)


@pytest.fixture
def index(backend, settings):
    idx = PromptIndex(backend, settings)
    idx.load(SAMPLE)
    return idx
