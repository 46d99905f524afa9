import types

import pytest

import figma2mjml.providers as providers
from figma2mjml.config import Settings
from figma2mjml.models import Layout, LayoutDescription, ProviderResponse
from figma2mjml.orchestrator import FallbackOrchestrator
from figma2mjml.providers import ProviderError

MJML = "<mjml><mj-body><mj-section><mj-column><mj-text>From {name}</mj-text></mj-column></mj-section></mj-body></mjml>"


class FakeAdapter:
    def __init__(self, name, fail=None, text=None):
        self.name = name
        self.fail = fail
        self.text = MJML.format(name=name) if text is None else text
        self.calls = 0

    def generate(self, description):
        self.calls += 1
        if self.fail is not None:
            raise self.fail
        return ProviderResponse(success=True, raw_text=self.text, model=f"{self.name}-model")


def _description():
    return LayoutDescription(source_name="Test", frame=Layout(name="Frame"))


def _orchestrator(*adapters, order=None):
    return FallbackOrchestrator({a.name: a for a in adapters}, default_order=order)


def test_first_success_wins_and_later_providers_are_not_called():
    a = FakeAdapter("a", fail=ProviderError("a", "a is down"))
    b = FakeAdapter("b")
    c = FakeAdapter("c")
    result = _orchestrator(a, b, c).generate(_description(), ["a", "b", "c"])

    assert result.provider_used == "b"
    assert result.used_fallback is False
    assert result.document.raw == MJML.format(name="b")
    assert result.document.model == "b-model"
    assert [(e.provider, e.error_message) for e in result.attempt_errors] == [("a", "a is down")]
    assert (a.calls, b.calls, c.calls) == (1, 1, 0)


def test_empty_provider_list_goes_straight_to_synthesizer():
    a = FakeAdapter("a")
    result = _orchestrator(a).generate(_description(), [])
    assert result.used_fallback is True
    assert result.provider_used == "synthesized"
    assert result.attempt_errors == []
    assert a.calls == 0


def test_default_order_is_used_when_none_given():
    a = FakeAdapter("a", fail=RuntimeError("boom"))
    b = FakeAdapter("b")
    result = _orchestrator(a, b, order=["b", "a"]).generate(_description())
    assert result.provider_used == "b"
    assert a.calls == 0


def test_unknown_and_empty_providers_are_recorded():
    empty = FakeAdapter("empty", text="   ")
    result = _orchestrator(empty).generate(_description(), ["nope", "empty"])
    assert result.used_fallback is True
    assert [e.provider for e in result.attempt_errors] == ["nope", "empty"]
    assert result.attempt_errors[0].error_message == "Unknown provider: nope"
    assert "empty document" in result.attempt_errors[1].error_message


def test_unexpected_exceptions_never_escape():
    a = FakeAdapter("a", fail=KeyError("choices"))
    b = FakeAdapter("b", fail=ValueError())
    result = _orchestrator(a, b).generate(_description(), ["a", "b"])
    assert result.used_fallback is True
    assert len(result.attempt_errors) == 2
    assert all(e.error_message for e in result.attempt_errors)


def test_synthesizer_name_ends_the_chain():
    a = FakeAdapter("a")
    result = _orchestrator(a).generate(_description(), ["Intelligent-Fallback", "a"])
    assert result.provider_used == "synthesized"
    assert a.calls == 0


def test_unconfigured_providers_fall_back_without_network(monkeypatch):
    def boom(*args, **kwargs):
        raise AssertionError("network must not be touched")

    monkeypatch.setattr(providers, "requests", types.SimpleNamespace(post=boom))
    settings = Settings(provider_keys={"openai": None, "groq": None, "cohere": None})
    orchestrator = FallbackOrchestrator.from_settings(settings)
    result = orchestrator.generate(_description(), ["openai", "groq", "cohere"])

    assert result.used_fallback is True
    assert result.provider_used == "synthesized"
    assert [e.provider for e in result.attempt_errors] == ["openai", "groq", "cohere"]
    assert all("not configured" in e.error_message for e in result.attempt_errors)
    assert result.document.raw.lstrip().startswith("<mjml>")


@pytest.mark.parametrize("order", [["openai"], ["groq", "cohere"]])
def test_attempt_errors_match_attempted_providers(order):
    orchestrator = FallbackOrchestrator.from_settings(Settings())
    result = orchestrator.generate(_description(), order)
    assert [e.provider for e in result.attempt_errors] == order


def test_attempt_errors_do_not_leak_credentials(monkeypatch, caplog):
    secret = "SECRET-KEY-123"

    def failing_post(url, headers=None, timeout=None, **kwargs):
        raise ConnectionError(f"Max retries exceeded with url: {url}?key={secret}")

    monkeypatch.setattr(providers, "requests", types.SimpleNamespace(post=failing_post))
    settings = Settings(provider_keys={"gemini": secret})
    with caplog.at_level("WARNING"):
        result = FallbackOrchestrator.from_settings(settings).generate(_description(), ["gemini"])

    assert result.used_fallback is True
    assert [e.provider for e in result.attempt_errors] == ["gemini"]
    assert secret not in result.attempt_errors[0].error_message
    assert secret not in caplog.text
