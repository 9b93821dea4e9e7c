"""Speech-to-text and language-model providers.

Each provider is a Provider subclass exposing the same capabilities:
transcribe() for audio, summarize()/translate() for chat completions.
The rest of the pipeline selects one with get_provider() and never
branches on provider names again.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from voice_notes.dispatch import RatePolicy
from voice_notes.errors import ProviderConfigError
from voice_notes.normalize import (
    TranscriptionResult,
    UnifiedResponse,
    normalize_response,
    normalize_transcription,
)
from voice_notes.shared import tprint as print, PipelineConfig

TRANSCRIPTION_PROMPT = (
    "Transcribe this audio recording exactly as spoken. Do not translate, "
    "summarize or add commentary. Return only the transcript text."
)


@dataclass(frozen=True)
class ProviderRequest:
    """One stateless call to a provider."""
    provider: str
    model: str
    system_message: str = ""
    prompt: str = ""
    audio_path: Optional[Path] = None
    temperature: float = 0.2
    json_mode: bool = False


def _to_dict(response) -> dict:
    """Turn an SDK response object into a plain dict."""
    if hasattr(response, "model_dump"):
        return response.model_dump()
    if hasattr(response, "to_dict"):
        return response.to_dict()
    if isinstance(response, dict):
        return response
    if isinstance(response, str):
        return {"text": response}
    raise TypeError(f"Unexpected provider response type: {type(response).__name__}")


class Provider:
    """Base class. Subclasses set the class attributes and implement the raw calls.

    A rate policy of None means the provider lacks that capability.
    """
    name = ""
    env_key: Optional[str] = None
    default_chat_model: Optional[str] = None
    default_transcription_model: Optional[str] = None
    transcription_rate: Optional[RatePolicy] = None
    chat_rate: Optional[RatePolicy] = None

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.api_key = config.api_key or (os.environ.get(self.env_key) if self.env_key else None)
        self._client = None

    @property
    def supports_transcription(self) -> bool:
        return self.transcription_rate is not None

    @property
    def supports_chat(self) -> bool:
        return self.chat_rate is not None

    def check_credentials(self) -> None:
        if self.env_key and not self.api_key:
            raise ProviderConfigError(
                f"No API key for {self.name}. Set {self.env_key} or pass --api-key.")

    def chat_model(self) -> str:
        return self.config.ai_model or self.default_chat_model

    def transcription_model(self) -> str:
        return self.config.transcription_model or self.default_transcription_model

    def transcription_request(self, audio_path: Path, prompt: str = "") -> ProviderRequest:
        if not self.supports_transcription:
            raise ProviderConfigError(f"{self.name} does not support transcription")
        return ProviderRequest(provider=self.name, model=self.transcription_model(),
                               prompt=prompt, audio_path=Path(audio_path),
                               temperature=0.0)

    def chat_request(self, system_message: str, prompt: str,
                     temperature: Optional[float] = None,
                     json_mode: bool = False) -> ProviderRequest:
        if not self.supports_chat:
            raise ProviderConfigError(f"{self.name} does not support chat completions")
        if temperature is None:
            temperature = self.config.temperature
        return ProviderRequest(provider=self.name, model=self.chat_model(),
                               system_message=system_message, prompt=prompt,
                               temperature=temperature, json_mode=json_mode)

    async def transcribe(self, request: ProviderRequest, index: int = 0) -> TranscriptionResult:
        raw = await self._transcribe_raw(request)
        return normalize_transcription(self.name, raw, index=index, model=request.model)

    async def complete(self, request: ProviderRequest) -> UnifiedResponse:
        raw = await self._complete_raw(request)
        return normalize_response(self.name, raw, model=request.model)

    async def summarize(self, request: ProviderRequest) -> UnifiedResponse:
        return await self.complete(request)

    async def translate(self, request: ProviderRequest) -> UnifiedResponse:
        return await self.complete(request)

    async def _transcribe_raw(self, request: ProviderRequest) -> dict:
        raise ProviderConfigError(f"{self.name} does not support transcription")

    async def _complete_raw(self, request: ProviderRequest) -> dict:
        raise ProviderConfigError(f"{self.name} does not support chat completions")


class OpenAIProvider(Provider):
    name = "openai"
    env_key = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    default_chat_model = "gpt-4o-mini"
    default_transcription_model = "whisper-1"
    transcription_rate = RatePolicy.spread(50)
    chat_rate = RatePolicy.spread(35)

    def client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            # Retries are handled by the dispatcher
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url,
                                       timeout=self.config.api_timeout, max_retries=0)
        return self._client

    @staticmethod
    def _wants_segments(model: str) -> bool:
        # gpt-4o transcription models only return plain json
        return not model.startswith("gpt-4o")

    async def _transcribe_raw(self, request: ProviderRequest) -> dict:
        kwargs = {
            "model": request.model,
            "response_format": "verbose_json" if self._wants_segments(request.model) else "json",
            "temperature": request.temperature,
        }
        if request.prompt:
            kwargs["prompt"] = request.prompt
        with open(request.audio_path, "rb") as f:
            response = await self.client().audio.transcriptions.create(file=f, **kwargs)
        return _to_dict(response)

    async def _complete_raw(self, request: ProviderRequest) -> dict:
        kwargs = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_message},
                {"role": "user", "content": request.prompt},
            ],
            "temperature": request.temperature,
        }
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client().chat.completions.create(**kwargs)
        return _to_dict(response)


class GroqProvider(OpenAIProvider):
    """Groq serves an OpenAI-compatible API at its own base URL."""
    name = "groqcloud"
    env_key = "GROQ_API_KEY"
    base_url = "https://api.groq.com/openai/v1"
    default_chat_model = "llama-3.3-70b-versatile"
    default_transcription_model = "whisper-large-v3-turbo"
    transcription_rate = RatePolicy.spread(20)
    chat_rate = RatePolicy.spread(25)

    @staticmethod
    def _wants_segments(model: str) -> bool:
        return True


class OllamaProvider(OpenAIProvider):
    """Local Ollama server through its OpenAI-compatible endpoint."""
    name = "ollama"
    env_key = None
    default_chat_model = "qwen2.5"
    default_transcription_model = None
    transcription_rate = None
    chat_rate = RatePolicy(1, 2.0)

    def __init__(self, config: PipelineConfig):
        super().__init__(config)
        self.base_url = config.ollama_base_url
        self.api_key = "ollama"


class AnthropicProvider(Provider):
    name = "anthropic"
    env_key = "ANTHROPIC_API_KEY"
    default_chat_model = "claude-sonnet-4-20250514"
    chat_rate = RatePolicy.spread(35)

    def client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key,
                                                    timeout=self.config.api_timeout,
                                                    max_retries=0)
        return self._client

    async def _complete_raw(self, request: ProviderRequest) -> dict:
        message = await self.client().messages.create(
            model=request.model,
            max_tokens=4096,
            system=request.system_message,
            messages=[{"role": "user", "content": request.prompt}],
            temperature=request.temperature,
        )
        return _to_dict(message)


class GeminiProvider(Provider):
    name = "google_gemini"
    env_key = "GOOGLE_API_KEY"
    default_chat_model = "gemini-2.0-flash"
    default_transcription_model = "gemini-2.0-flash"
    transcription_rate = RatePolicy.spread(15)
    chat_rate = RatePolicy.spread(15)

    def _model(self, model_name: str, system_message: str = ""):
        import google.generativeai as genai
        genai.configure(api_key=self.api_key)
        return genai.GenerativeModel(model_name, system_instruction=system_message or None)

    async def _transcribe_raw(self, request: ProviderRequest) -> dict:
        import google.generativeai as genai
        genai.configure(api_key=self.api_key)
        audio_file = await asyncio.to_thread(genai.upload_file, str(request.audio_path))
        model = self._model(request.model)
        response = await model.generate_content_async(
            [request.prompt or TRANSCRIPTION_PROMPT, audio_file],
            generation_config={"temperature": request.temperature},
        )
        return _to_dict(response)

    async def _complete_raw(self, request: ProviderRequest) -> dict:
        model = self._model(request.model, request.system_message)
        generation_config = {"temperature": request.temperature}
        if request.json_mode:
            generation_config["response_mime_type"] = "application/json"
        response = await model.generate_content_async(
            request.prompt, generation_config=generation_config)
        return _to_dict(response)


class WhisperProvider(Provider):
    """Local openai-whisper model. One chunk at a time; it is CPU/GPU bound."""
    name = "whisper"
    env_key = None
    default_transcription_model = "small"
    transcription_rate = RatePolicy(1)

    def _load(self, model_name: str):
        if self._client is None:
            import whisper
            print(f"  Loading Whisper {model_name} (may be slow on CPU)...")
            self._client = whisper.load_model(model_name)
        return self._client

    async def _transcribe_raw(self, request: ProviderRequest) -> dict:
        model = await asyncio.to_thread(self._load, request.model)
        result = await asyncio.to_thread(
            model.transcribe,
            str(request.audio_path),
            condition_on_previous_text=False,
            no_speech_threshold=0.2,
            compression_ratio_threshold=2.0,
        )
        return {
            "text": result["text"],
            "segments": result.get("segments", []),
            "language": result.get("language"),
        }


class DeepgramProvider(Provider):
    """Deepgram prerecorded audio. Utterances carry speaker numbers for the captions."""
    name = "deepgram"
    env_key = "DEEPGRAM_API_KEY"
    default_transcription_model = "nova-3"
    transcription_rate = RatePolicy.spread(50)

    def client(self):
        if self._client is None:
            from deepgram import DeepgramClient
            self._client = DeepgramClient(self.api_key)
        return self._client

    async def _transcribe_raw(self, request: ProviderRequest) -> dict:
        from deepgram import PrerecordedOptions
        options = PrerecordedOptions(
            model=request.model,
            detect_language=True,
            diarize=True,
            numerals=True,
            measurements=True,
            punctuate=True,
            dictation=True,
            utterances=True,
        )
        with open(request.audio_path, "rb") as f:
            payload = {"buffer": f.read()}
        response = await self.client().listen.asyncrest.v("1").transcribe_file(payload, options)
        return _to_dict(response)


def words_to_segments(words: list, max_words: int = 12) -> list:
    """Group word timings into caption-sized segments.

    A segment closes after sentence-final punctuation, on a speaker change,
    or once it holds max_words words. Spacing entries only join words.
    """
    segments = []
    current = None
    count = 0
    for word in words:
        kind = word.get("type", "word")
        text = word.get("text", "")
        if kind == "spacing":
            if current is not None:
                current["text"] += text
            continue
        speaker = word.get("speaker_id")
        if current is not None and speaker != current["speaker"]:
            segments.append(current)
            current = None
        if current is None:
            current = {"start": word.get("start", 0), "end": word.get("end", 0),
                       "text": "", "speaker": speaker}
            count = 0
        current["text"] += text
        current["end"] = word.get("end", current["end"])
        count += 1
        if count >= max_words or text.rstrip().endswith((".", "!", "?")):
            segments.append(current)
            current = None
    if current is not None:
        segments.append(current)
    for segment in segments:
        segment["text"] = segment["text"].strip()
    return segments


class ElevenLabsProvider(Provider):
    """ElevenLabs Scribe speech-to-text with word timings and speaker ids."""
    name = "elevenlabs"
    env_key = "ELEVENLABS_API_KEY"
    default_transcription_model = "scribe_v1"
    transcription_rate = RatePolicy.spread(10)

    def client(self):
        if self._client is None:
            from elevenlabs.client import AsyncElevenLabs
            self._client = AsyncElevenLabs(api_key=self.api_key,
                                           timeout=self.config.api_timeout)
        return self._client

    async def _transcribe_raw(self, request: ProviderRequest) -> dict:
        with open(request.audio_path, "rb") as f:
            response = await self.client().speech_to_text.convert(
                file=f,
                model_id=request.model,
                diarize=True,
                timestamps_granularity="word",
                tag_audio_events=True,
            )
        raw = _to_dict(response)
        raw["segments"] = words_to_segments(raw.get("words") or [])
        return raw


PROVIDERS = {
    cls.name: cls
    for cls in (OpenAIProvider, GroqProvider, OllamaProvider, AnthropicProvider,
                GeminiProvider, WhisperProvider, DeepgramProvider, ElevenLabsProvider)
}


def get_provider(name: str, config: PipelineConfig) -> Provider:
    """Instantiate the provider registered under name."""
    cls = PROVIDERS.get(name)
    if cls is None:
        raise ProviderConfigError(
            f"Unknown provider: {name}. Valid options: {', '.join(sorted(PROVIDERS))}")
    return cls(config)
