import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from medwatch import llm
from medwatch.config import get_settings
from medwatch.errors import CorrectionFailure, ReviewFailure


@pytest.fixture
def openai_provider(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    get_settings.cache_clear()


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeClient:
    def __init__(self, replies):
        self._replies = list(replies)
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return _completion(reply)


def test_extract_json_variants():
    assert llm._extract_json('{"a": 1}') == {"a": 1}
    assert llm._extract_json('Sure! ```json\n{"a": 2}\n```') == {"a": 2}
    assert llm._extract_json("no json here") == {}
    assert llm._extract_json("") == {}
    assert llm._extract_json("[1, 2]") == {}


def test_mock_correction_echoes_input():
    result = llm.correct_text("I had a rash", "What happened?")
    assert result.corrected_text == "I had a rash"


def test_correction_parses_model_reply(openai_provider, monkeypatch):
    client = FakeClient([json.dumps({
        "correctedText": "I had a rash ",
        "intentSummary": "Reporter describes a skin reaction.",
        "productType": "medication",
    })])
    monkeypatch.setattr(llm, "_openai_client", lambda: client)

    result = llm.correct_text("I had a rsah", "What kind of problem did you experience?")

    assert result.corrected_text == "I had a rash"
    assert result.intent_summary == "Reporter describes a skin reaction."
    assert result.product_type == "medication"
    sent = client.requests[0]
    assert sent["response_format"]["json_schema"]["name"] == "medwatch_answer_correction"
    assert "Text: I had a rsah" in sent["messages"][-1]["content"]


def test_schema_rejection_retries_with_plain_json(openai_provider, monkeypatch):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    rejected = openai.BadRequestError(
        "response_format not supported", response=httpx.Response(400, request=request), body=None
    )
    client = FakeClient([rejected, '{"correctedText": "Aspirin"}'])
    monkeypatch.setattr(llm, "_openai_client", lambda: client)

    assert llm.correct_text("asprin", "Product name?").corrected_text == "Aspirin"
    assert "response_format" not in client.requests[1]


def test_timeout_becomes_correction_failure(openai_provider, monkeypatch):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client = FakeClient([openai.APITimeoutError(request=request)])
    monkeypatch.setattr(llm, "_openai_client", lambda: client)

    with pytest.raises(CorrectionFailure):
        llm.correct_text("yes", "Do you have a picture of the product? (Yes/No)")


def test_missing_api_key_is_correction_failure(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    get_settings.cache_clear()
    with pytest.raises(CorrectionFailure):
        llm.correct_text("yes", "Question?")


def test_reply_without_corrected_text_fails(openai_provider, monkeypatch):
    monkeypatch.setattr(llm, "_openai_client", lambda: FakeClient(['{"intentSummary": "?"}']))
    with pytest.raises(CorrectionFailure):
        llm.correct_text("yes", "Question?")


def test_mock_review():
    result = llm.review_report("assistant: Q?\nuser: A")
    text = result.as_text()
    assert set(json.loads(text)) == {
        "consistencyCheck", "completenessScore", "anonymizationCheck", "clarityAssessment",
    }


def test_review_parses_model_reply(openai_provider, monkeypatch):
    reply = {
        "consistencyCheck": "Stop date precedes start date.",
        "completenessScore": "Outcome missing.",
        "anonymizationCheck": "Phone number appears in the description.",
        "clarityAssessment": "Clarify 'it' in the narrative.",
    }
    monkeypatch.setattr(llm, "_openai_client", lambda: FakeClient([json.dumps(reply)]))

    result = llm.review_report("user: something")

    assert result.consistency_check == "Stop date precedes start date."
    assert result.model_dump(by_alias=True) == reply


def test_review_with_incomplete_reply_fails(openai_provider, monkeypatch):
    monkeypatch.setattr(llm, "_openai_client", lambda: FakeClient(['{"consistencyCheck": "ok"}']))
    with pytest.raises(ReviewFailure):
        llm.review_report("user: something")
