import json
from typing import List, Tuple

import pytest

from medwatch.config import get_settings
from medwatch.flow import Correction
from medwatch.questionnaire import load_questionnaire
from medwatch import storage


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path):
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'reports.db'}")
    monkeypatch.delenv("DEMO_PASSWORD", raising=False)
    monkeypatch.delenv("ALLOW_LOGGING", raising=False)
    monkeypatch.delenv("QUESTIONNAIRE_PATH", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    storage.reset_engine()
    yield
    get_settings.cache_clear()
    storage.reset_engine()


class RecordingCorrector:
    """Echoes input back unchanged and remembers every call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, str]] = []

    def __call__(self, text: str, question: str) -> Correction:
        self.calls.append((text, question))
        return Correction(corrected_text=text, intent_summary="echo")


@pytest.fixture
def corrector() -> RecordingCorrector:
    return RecordingCorrector()


@pytest.fixture
def questionnaire():
    return load_questionnaire()


@pytest.fixture
def small_table(tmp_path):
    """Six-question table: one question per always-asked section, two each for product and device."""
    data = {
        "product_type_index": 1,
        "sections": [
            {"key": "A", "title": "Problem", "condition": "always"},
            {"key": "C", "title": "Product", "condition": "not_device"},
            {"key": "D", "title": "Device", "condition": "device"},
            {"key": "E", "title": "Person", "condition": "always"},
        ],
        "questions": [
            {"index": 0, "section": "A", "text": "What happened?"},
            {"index": 1, "section": "C", "text": "What type of product is this?"},
            {"index": 2, "section": "C", "text": "Product name?"},
            {"index": 3, "section": "D", "text": "Device name?"},
            {"index": 4, "section": "D", "text": "Serial number?"},
            {"index": 5, "section": "E", "text": "Initials?"},
        ],
    }
    path = tmp_path / "small.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path
