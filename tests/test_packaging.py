import importlib
import re
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
PYPROJECT = ROOT / "pyproject.toml"


def test_declared_readme_is_a_readme():
    match = re.search(r'^readme\s*=\s*"([^"]+)"', PYPROJECT.read_text(), re.MULTILINE)
    if match:
        assert Path(match.group(1)).stem.upper() == "README"
        assert (ROOT / match.group(1)).exists()


def test_console_script_resolves():
    match = re.search(r'^drift-reconciler\s*=\s*"([\w.]+):(\w+)"', PYPROJECT.read_text(), re.MULTILINE)
    module, attr = match.groups()
    assert callable(getattr(importlib.import_module(module), attr))
