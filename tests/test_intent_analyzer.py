import pytest

from conftest import StubResponder
from intent_analyzer import INTENT_SCHEMA, Intent, IntentAnalyzer


def test_disabled_analyzer_returns_unknown():
    responder = StubResponder(enabled=False)
    assert IntentAnalyzer(responder).classify("apply for a bursary") == Intent.UNKNOWN
    assert responder.calls == []


def test_classifies_from_json_schema_response():
    responder = StubResponder(['{"intent": "bursary_application"}'])
    analyzer = IntentAnalyzer(responder)
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello!"}]
    assert analyzer.classify("I need funding for varsity", history) == Intent.BURSARY_APPLICATION

    call = responder.calls[0]
    assert call["response_format"] == {"type": "json_schema", "json_schema": INTENT_SCHEMA}
    assert "I need funding for varsity" in call["messages"][1]["content"]
    assert "assistant: hello!" in call["messages"][1]["content"]


@pytest.mark.parametrize(
    "raw",
    [None, "not json", "[]", '{"intent": "book_flight"}', '{"intent": ["greeting"]}', "{}"],
)
def test_bad_responses_fall_back_to_unknown(raw):
    responder = StubResponder([raw] if raw is not None else [])
    assert IntentAnalyzer(responder).classify("hmm") == Intent.UNKNOWN


def test_history_window_limits_context():
    responder = StubResponder(['{"intent": "greeting"}'])
    history = [{"role": "user", "content": f"message {i}"} for i in range(15)]
    IntentAnalyzer(responder, history_window=3).classify("hi", history)
    content = responder.calls[0]["messages"][1]["content"]
    assert "message 14" in content
    assert "message 11" not in content


def test_schema_enum_matches_intents():
    assert INTENT_SCHEMA["schema"]["properties"]["intent"]["enum"] == [i.value for i in Intent]
    assert INTENT_SCHEMA["strict"] is True
