from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import httpx
from openai import APIConnectionError

from lembrete.llm.openai_client import OpenAIClassifier, parse_classification

NOW = datetime(2025, 1, 1, 2, 59, tzinfo=timezone.utc)


class FakeResponses:
    def __init__(self, output_text: str | None = None, error: Exception | None = None) -> None:
        self.output_text = output_text
        self.error = error
        self.kwargs: dict | None = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return SimpleNamespace(output_text=self.output_text)


def make_classifier(responses: FakeResponses) -> OpenAIClassifier:
    classifier = OpenAIClassifier(api_key="sk-test", base_url="http://localhost:9/v1", model="test-model",
                                  timezone="America/Sao_Paulo")
    classifier.client = SimpleNamespace(responses=responses)
    return classifier


def test_parse_classification_full_payload():
    result = parse_classification(
        '{"shouldSchedule": true, "date": "2025-01-01", "time": "09:00", '
        '"timezone": "America/Sao_Paulo", "content": "call mom", "recipient": "maria"}'
    )
    assert result.should_schedule is True
    assert (result.date, result.time, result.timezone) == ("2025-01-01", "09:00", "America/Sao_Paulo")
    assert result.content == "call mom"
    assert result.recipient_hint == "maria"


def test_parse_classification_strips_code_fence_and_blanks():
    result = parse_classification('```json\n{"shouldRemind": true, "date": "2025-01-01", "time": " ", "recipient": null}\n```')
    assert result.should_schedule is True
    assert result.time is None
    assert result.recipient_hint is None


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", ""])
def test_parse_classification_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_classification(raw)


async def test_classify_sends_local_time_in_instructions():
    responses = FakeResponses('{"shouldSchedule": false}')
    classifier = make_classifier(responses)

    result = await classifier.classify("hello", NOW)

    assert result.should_schedule is False
    assert responses.kwargs["model"] == "test-model"
    assert responses.kwargs["input"] == "hello"
    assert "2024-12-31 23:59:00" in responses.kwargs["instructions"]
    assert "America/Sao_Paulo" in responses.kwargs["instructions"]


async def test_classify_degrades_on_bad_output():
    classifier = make_classifier(FakeResponses("I am not JSON"))
    result = await classifier.classify("remind me", NOW)
    assert result.should_schedule is False


async def test_classify_degrades_on_api_error():
    error = APIConnectionError(request=httpx.Request("POST", "http://localhost:9/v1/responses"))
    classifier = make_classifier(FakeResponses(error=error))
    result = await classifier.classify("remind me", NOW)
    assert result.should_schedule is False
