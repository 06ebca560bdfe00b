import importlib
import sys
from pathlib import Path

import pytest


@pytest.fixture
def import_from(tmp_path: Path, monkeypatch):
    """
    Import modules written under tmp_path; everything loaded from there is
    dropped from sys.modules afterwards so tests can reuse module names.
    """
    monkeypatch.syspath_prepend(str(tmp_path))
    importlib.invalidate_caches()

    def _import(name: str):
        importlib.invalidate_caches()
        return importlib.import_module(name)

    yield _import

    root = str(tmp_path)
    for name, mod in list(sys.modules.items()):
        if (getattr(mod, "__file__", None) or "").startswith(root):
            del sys.modules[name]
