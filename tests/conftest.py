from __future__ import annotations

import os

import pytest

from knowledge.loader import get_knowledge

_KNOWLEDGE_ENV = ("ALLERGEN_TAXONOMY_PATH", "FUNCTIONAL_REGISTRY_PATH")


@pytest.fixture(autouse=True)
def fresh_knowledge_snapshot():
    # every test starts from the in-repo seed unless it points the env at a file itself
    saved = {key: os.environ.pop(key, None) for key in _KNOWLEDGE_ENV}
    get_knowledge.cache_clear()
    yield
    get_knowledge.cache_clear()
    for key, value in saved.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
