from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TEST_ROOT = Path(tempfile.gettempdir()) / "applyflow-tests"
_TEST_ROOT.mkdir(parents=True, exist_ok=True)
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'applyflow_test.db'}"
os.environ["DATA_DIR"] = str(_TEST_ROOT)
os.environ["SCREENSHOT_DIR"] = str(_TEST_ROOT / "screenshots")

import pytest  # noqa: E402

from applyflow.core import runtime  # noqa: E402
from applyflow.db.base import Base  # noqa: E402
from applyflow.db.session import engine  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    runtime.reset_runtime()
    yield
    runtime.reset_runtime()
