from __future__ import annotations

import pytest

from taleweaver.common import UpstreamGenerationError, call_chat_completion
from taleweaver.common import llm


class FakeCompletion:
    def __init__(self, response=None, *, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def answer(content) -> dict:
    return {"choices": [{"message": {"content": content}}]}


MESSAGES = [{"role": "user", "content": "Tell me a story."}]


def test_returns_stripped_first_choice(monkeypatch):
    fake = FakeCompletion(answer("  Once upon a time.\n"))
    monkeypatch.setattr(llm, "completion", fake)

    result = call_chat_completion(model="m", messages=MESSAGES, temperature=0.5)

    assert result.text == "Once upon a time."
    assert result.raw == fake.response
    assert fake.calls[0]["temperature"] == 0.5


def test_unset_options_are_not_sent(monkeypatch):
    fake = FakeCompletion(answer("ok"))
    monkeypatch.setattr(llm, "completion", fake)

    call_chat_completion(model="m", messages=MESSAGES, response_format={"type": "json_object"})

    (call,) = fake.calls
    assert set(call) == {"model", "messages", "response_format"}


def test_joins_text_parts(monkeypatch):
    content = [
        {"type": "text", "text": "Once upon "},
        {"type": "image_url", "image_url": {"url": "data:,"}},
        {"type": "text", "text": "a time."},
    ]
    monkeypatch.setattr(llm, "completion", FakeCompletion(answer(content)))

    assert call_chat_completion(model="m", messages=MESSAGES).text == "Once upon a time."


def test_provider_error_becomes_upstream_error(monkeypatch):
    monkeypatch.setattr(llm, "completion", FakeCompletion(error=RuntimeError("rate limited")))

    with pytest.raises(UpstreamGenerationError, match="rate limited") as excinfo:
        call_chat_completion(model="m", messages=MESSAGES)

    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.parametrize("response", [{}, {"choices": []}, None])
def test_malformed_response_becomes_upstream_error(monkeypatch, response):
    monkeypatch.setattr(llm, "completion", FakeCompletion(response))

    with pytest.raises(UpstreamGenerationError, match="Unexpected response format"):
        call_chat_completion(model="m", messages=MESSAGES)
