"""Shared test fixtures and utilities."""

import asyncio

from voice_notes.dispatch import RatePolicy
from voice_notes.providers import Provider
from voice_notes.shared import PipelineConfig


def make_openai_response(text="hello", prompt_tokens=10, completion_tokens=5,
                         model="gpt-4o-mini"):
    """Build an OpenAI ChatCompletion reply as returned by model_dump()."""
    return {
        "id": "chatcmpl-123",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def make_config(tmp_path, **overrides):
    """PipelineConfig pointing into tmp_path, with zero retry backoff."""
    values = {
        "audio_path": tmp_path / "audio.mp3",
        "output_dir": tmp_path / "out",
        "api_key": "test-key",
        "api_initial_backoff": 0,
    }
    values.update(overrides)
    return PipelineConfig(**values)


class HTTPError(Exception):
    """Stand-in for an SDK error carrying an HTTP status."""

    def __init__(self, status_code, message="HTTP error"):
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code


class FakeTokenizer:
    """One token per whitespace-separated word."""

    def __init__(self):
        self.vocab = {}
        self.words = []

    def encode(self, text):
        ids = []
        for word in text.split():
            if word not in self.vocab:
                self.vocab[word] = len(self.words)
                self.words.append(word)
            ids.append(self.vocab[word])
        return ids

    def decode(self, tokens):
        return " ".join(self.words[t] if t < len(self.words) else f"w{t}" for t in tokens)


class FakeProvider(Provider):
    """In-memory provider using OpenAI reply shapes.

    chat(request) and transcribe(request) return reply text or raise.
    Tracks the peak number of simultaneous calls.
    """
    name = "openai"
    default_chat_model = "fake-chat"
    default_transcription_model = "fake-stt"
    transcription_rate = RatePolicy(4)
    chat_rate = RatePolicy(4)

    def __init__(self, config, chat=None, transcribe=None, delay=0.0):
        super().__init__(config)
        self.chat_fn = chat or (lambda request: '{"title": "Fake"}')
        self.transcribe_fn = transcribe or (lambda request: "fake transcript.")
        self.delay = delay
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _track(self, fn, request):
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return fn(request)
        finally:
            self.in_flight -= 1

    async def _complete_raw(self, request):
        text = await self._track(self.chat_fn, request)
        return make_openai_response(text, model=request.model)

    async def _transcribe_raw(self, request):
        text = await self._track(self.transcribe_fn, request)
        return {"text": text}
