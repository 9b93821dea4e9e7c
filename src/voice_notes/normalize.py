"""Map provider-native replies onto one response shape.

Providers hand back plain dicts (SDK objects are converted with
model_dump() / to_dict() at the call site). Field locations differ per
provider and are listed in RESPONSE_SHAPES and TRANSCRIPTION_SHAPES
rather than branched on in code.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from voice_notes.errors import ProviderConfigError


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(self.prompt_tokens + other.prompt_tokens,
                     self.completion_tokens + other.completion_tokens,
                     self.total_tokens + other.total_tokens)


@dataclass
class UnifiedResponse:
    id: str
    provider: str
    model: str
    content: str
    usage: Usage = field(default_factory=Usage)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TranscriptionResult:
    """One chunk's transcript."""
    index: int
    text: str
    vtt: Optional[str] = None
    segments: Optional[list] = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ResponseShape:
    """Where each field lives in a provider's chat reply.

    total_tokens=None means the provider reports prompt and completion
    counts only, so the total is their sum.
    """
    content: tuple
    prompt_tokens: tuple
    completion_tokens: tuple
    total_tokens: Optional[tuple]
    id: tuple = ("id",)
    model: tuple = ("model",)


_OPENAI_CHAT = ResponseShape(
    content=("choices", 0, "message", "content"),
    prompt_tokens=("usage", "prompt_tokens"),
    completion_tokens=("usage", "completion_tokens"),
    total_tokens=("usage", "total_tokens"),
)

RESPONSE_SHAPES = {
    "openai": _OPENAI_CHAT,
    "groqcloud": _OPENAI_CHAT,
    "ollama": _OPENAI_CHAT,
    "anthropic": ResponseShape(
        content=("content", 0, "text"),
        prompt_tokens=("usage", "input_tokens"),
        completion_tokens=("usage", "output_tokens"),
        total_tokens=None,
    ),
    "google_gemini": ResponseShape(
        content=("candidates", 0, "content", "parts", 0, "text"),
        prompt_tokens=("usage_metadata", "prompt_token_count"),
        completion_tokens=("usage_metadata", "candidates_token_count"),
        total_tokens=("usage_metadata", "total_token_count"),
        id=("response_id",),
        model=("model_version",),
    ),
}


@dataclass(frozen=True)
class TranscriptionShape:
    """Where the text, timed segments, language and duration live.

    segment_text and speaker name the keys inside each segment.
    """
    text: tuple
    segments: Optional[tuple] = None
    language: Optional[tuple] = None
    duration: tuple = ("duration",)
    segment_text: str = "text"
    speaker: Optional[str] = None


_WHISPER_JSON = TranscriptionShape(("text",), ("segments",), ("language",))

TRANSCRIPTION_SHAPES = {
    "openai": _WHISPER_JSON,
    "groqcloud": _WHISPER_JSON,
    "whisper": _WHISPER_JSON,
    "google_gemini": TranscriptionShape(("candidates", 0, "content", "parts", 0, "text")),
    "deepgram": TranscriptionShape(
        text=("results", "channels", 0, "alternatives", 0, "transcript"),
        segments=("results", "utterances"),
        language=("results", "channels", 0, "detected_language"),
        duration=("metadata", "duration"),
        segment_text="transcript",
        speaker="speaker",
    ),
    # segments are grouped from word timings by the provider
    "elevenlabs": TranscriptionShape(("text",), ("segments",), ("language_code",),
                                     speaker="speaker"),
}


def _dig(raw, path: tuple):
    """Follow a key/index path into nested dicts and lists; None if any step is missing."""
    value = raw
    for key in path:
        try:
            value = value[key]
        except (KeyError, IndexError, TypeError):
            return None
        if value is None:
            return None
    return value


def _count(raw, path: tuple) -> int:
    value = _dig(raw, path)
    return int(value) if isinstance(value, (int, float)) else 0


def normalize_response(provider: str, raw: dict, model: Optional[str] = None) -> UnifiedResponse:
    """Convert a raw chat reply into a UnifiedResponse.

    Providers that omit usage get zeros. Unknown providers raise
    ProviderConfigError.
    """
    shape = RESPONSE_SHAPES.get(provider)
    if shape is None:
        raise ProviderConfigError(f"No response mapping for provider: {provider}")

    prompt = _count(raw, shape.prompt_tokens)
    completion = _count(raw, shape.completion_tokens)
    if shape.total_tokens is None:
        total = prompt + completion
    else:
        total = _count(raw, shape.total_tokens)

    return UnifiedResponse(
        id=str(_dig(raw, shape.id) or ""),
        provider=provider,
        model=_dig(raw, shape.model) or model or "",
        content=_dig(raw, shape.content) or "",
        usage=Usage(prompt, completion, total),
    )


def format_timestamp(seconds: float) -> str:
    """HH:MM:SS.mmm as used in WebVTT cues."""
    millis = int(round(max(seconds, 0.0) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def segments_to_vtt(segments: list) -> str:
    """Build a WebVTT caption track from timestamped segments."""
    lines = ["WEBVTT", ""]
    for number, seg in enumerate(segments, 1):
        lines.append(str(number))
        lines.append(f"{format_timestamp(seg.get('start', 0))} --> "
                     f"{format_timestamp(seg.get('end', 0))}")
        text = str(seg.get("text", "")).strip()
        if seg.get("speaker") is not None:
            text = f"<v {seg['speaker']}>{text}"
        lines.append(text)
        lines.append("")
    return "\n".join(lines)


def _speaker_label(value) -> Optional[str]:
    # Deepgram numbers speakers from 0; ElevenLabs sends ids like "speaker_0"
    if value is None:
        return None
    if isinstance(value, int):
        return f"Speaker {value}"
    return str(value)


def normalize_transcription(provider: str, raw: dict, index: int = 0,
                            model: Optional[str] = None) -> TranscriptionResult:
    """Convert a raw transcription reply into a TranscriptionResult.

    A caption track is generated whenever the reply carries segment
    timestamps.
    """
    shape = TRANSCRIPTION_SHAPES.get(provider)
    if shape is None:
        raise ProviderConfigError(f"No transcription mapping for provider: {provider}")

    text = _dig(raw, shape.text) or ""
    segments = _dig(raw, shape.segments) if shape.segments else None
    if segments is not None:
        cleaned = []
        for s in segments:
            segment = {"start": s.get("start", 0), "end": s.get("end", 0),
                       "text": s.get(shape.segment_text, "")}
            speaker = _speaker_label(s.get(shape.speaker)) if shape.speaker else None
            if speaker:
                segment["speaker"] = speaker
            cleaned.append(segment)
        segments = cleaned
    vtt = segments_to_vtt(segments) if segments else None

    metadata = {"provider": provider, "model": model}
    if shape.language:
        language = _dig(raw, shape.language)
        if language:
            metadata["language"] = language
    duration = _dig(raw, shape.duration)
    if duration:
        metadata["duration"] = duration

    return TranscriptionResult(index=index, text=str(text).strip(), vtt=vtt,
                               segments=segments, metadata=metadata)
