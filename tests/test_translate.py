"""Tests for translate.py: language detection and paragraph translation."""

import asyncio

import pytest

from conftest import FakeProvider, HTTPError, make_config

from voice_notes.errors import StructuredOutputError
from voice_notes.shared import RunContext
from voice_notes.translate import (
    DETECT_SYSTEM_MESSAGE,
    detect_language,
    language_label,
    translate_paragraphs,
    translate_transcript,
    translation_system_message,
)


def _ctx(config, tmp_path):
    return RunContext(config=config, source_path=tmp_path / "a.mp3", work_dir=tmp_path)


def _translator(detected='{"label": "English", "value": "en"}'):
    """Chat stand-in: answers detection requests with `detected`, echoes the rest upper-cased."""
    def chat(request):
        if request.system_message == DETECT_SYSTEM_MESSAGE:
            return detected
        return request.prompt.upper()
    return chat


class TestLanguageLabel:
    def test_known(self):
        assert language_label("de") == "German"
        assert language_label("FR") == "French"

    def test_unknown_returns_code(self):
        assert language_label("xx") == "xx"

    def test_system_message(self):
        assert "Japanese (ISO 639-1 code: ja)" in translation_system_message("ja")


class TestDetectLanguage:
    def test_returns_label_and_code(self, tmp_path):
        config = make_config(tmp_path)
        provider = FakeProvider(config, chat=_translator('{"label": "Spanish", "value": "ES"}'))
        result = asyncio.run(detect_language(provider, "hola", config))
        assert result == {"label": "Spanish", "value": "es"}
        assert provider.requests[0].temperature == 0
        assert provider.requests[0].json_mode is True

    def test_missing_code_raises(self, tmp_path):
        config = make_config(tmp_path)
        provider = FakeProvider(config, chat=_translator('{"label": "Spanish"}'))
        with pytest.raises(StructuredOutputError):
            asyncio.run(detect_language(provider, "hola", config))


class TestTranslateParagraphs:
    def test_order_and_usage(self, tmp_path):
        config = make_config(tmp_path)
        provider = FakeProvider(config, chat=_translator(), delay=0.01)
        result = asyncio.run(translate_paragraphs(provider, ["one", "two", "three"], "de", config))
        assert result.paragraphs == ["ONE", "TWO", "THREE"]
        assert result.language == "German"
        assert result.language_code == "de"
        assert result.usage.total_tokens == 45
        assert result.model == "fake-chat"

    def test_failure_propagates(self, tmp_path):
        config = make_config(tmp_path)

        def chat(request):
            if request.prompt == "two":
                raise HTTPError(401, "invalid key")
            return request.prompt

        provider = FakeProvider(config, chat=chat)
        with pytest.raises(HTTPError, match="invalid key"):
            asyncio.run(translate_paragraphs(provider, ["one", "two"], "de", config))


class TestTranslateTranscript:
    def test_no_target_skips(self, tmp_path):
        config = make_config(tmp_path)
        provider = FakeProvider(config)
        assert asyncio.run(translate_transcript(_ctx(config, tmp_path), provider, "Hi.")) is None
        assert provider.requests == []

    def test_same_language_skips(self, tmp_path):
        config = make_config(tmp_path, translate_to="en")
        provider = FakeProvider(config, chat=_translator())
        result = asyncio.run(translate_transcript(_ctx(config, tmp_path), provider, "Hello there."))
        assert result is None
        assert len(provider.requests) == 1

    def test_translates_paragraphs(self, tmp_path, capsys):
        config = make_config(tmp_path, translate_to="fr")
        provider = FakeProvider(config, chat=_translator())
        text = "First one. Second one. Third one. Fourth one. Fifth one."
        result = asyncio.run(translate_transcript(_ctx(config, tmp_path), provider, text))
        assert result.paragraphs == ["FIRST ONE. SECOND ONE. THIRD ONE. FOURTH ONE.", "FIFTH ONE."]
        assert result.language == "French"
        assert "Translated 2 paragraph(s) into French" in capsys.readouterr().out
