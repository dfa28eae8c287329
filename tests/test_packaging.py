"""Every third-party package imported by the service is declared."""
import re
from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent


def declared_names():
    project = tomllib.loads((ROOT / "pyproject.toml").read_text())["project"]
    return {re.split(r"[<>=\[ ]", dep, 1)[0].lower() for dep in project["dependencies"]}


@pytest.mark.parametrize("name", [
    "fastapi", "uvicorn", "sqlalchemy", "pydantic", "celery", "kombu",
    "redis", "anthropic", "python-dotenv",
])
def test_dependency_is_declared(name):
    assert name in declared_names()
