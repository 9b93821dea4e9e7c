"""Optional transcript translation.

Paragraphs are translated independently on their own dispatcher. Unlike
summarization there is no placeholder for a failed paragraph: a missing
paragraph would silently corrupt the translated transcript, so the error
propagates.
"""

from dataclasses import dataclass, field
from typing import Optional

from voice_notes.dispatch import Dispatcher
from voice_notes.errors import StructuredOutputError
from voice_notes.normalize import Usage
from voice_notes.providers import Provider
from voice_notes.shared import tprint as print, PipelineConfig, RunContext
from voice_notes.splitter import make_paragraphs
from voice_notes.structured import repair_json

LANGUAGES = {
    "ar": "Arabic", "bg": "Bulgarian", "cs": "Czech", "da": "Danish",
    "de": "German", "el": "Greek", "en": "English", "es": "Spanish",
    "fi": "Finnish", "fr": "French", "he": "Hebrew", "hi": "Hindi",
    "hu": "Hungarian", "id": "Indonesian", "it": "Italian", "ja": "Japanese",
    "ko": "Korean", "nl": "Dutch", "no": "Norwegian", "pl": "Polish",
    "pt": "Portuguese", "ro": "Romanian", "ru": "Russian", "sk": "Slovak",
    "sv": "Swedish", "th": "Thai", "tr": "Turkish", "uk": "Ukrainian",
    "vi": "Vietnamese", "zh": "Chinese",
}

DETECT_SYSTEM_MESSAGE = (
    "Detect the language of the prompt, then return a valid JSON object containing "
    "the language name and ISO 639-1 language code of the text.\n\n"
    'Example: {"label": "English", "value": "en"}'
)


def language_label(code: str) -> str:
    return LANGUAGES.get(code.lower(), code)


def translation_system_message(code: str) -> str:
    return (f"Translate the text into {language_label(code)} (ISO 639-1 code: {code}). "
            "Return only the translation, without commentary.")


@dataclass
class TranslationResult:
    paragraphs: list
    language: str
    language_code: str
    usage: Usage = field(default_factory=Usage)
    model: str = ""


async def detect_language(provider: Provider, text: str, config: PipelineConfig,
                          ctx: Optional[RunContext] = None) -> dict:
    """Ask the model for the language of text. Returns {"label", "value"}."""
    dispatcher = Dispatcher.for_stage(provider.chat_rate, config, ctx, label="Language detection")

    async def call(index, sample):
        request = provider.chat_request(DETECT_SYSTEM_MESSAGE, sample, temperature=0,
                                        json_mode=True)
        return await provider.complete(request)

    [response] = await dispatcher.dispatch([text], call)
    result = repair_json(response.content)
    if not isinstance(result, dict) or not result.get("value"):
        raise StructuredOutputError(response.content, [ValueError("No language code in reply")])
    return {"label": str(result.get("label") or result["value"]),
            "value": str(result["value"]).lower()}


async def translate_paragraphs(provider: Provider, paragraphs: list[str], code: str,
                               config: PipelineConfig,
                               ctx: Optional[RunContext] = None) -> TranslationResult:
    """Translate each paragraph into the target language, keeping their order."""
    system_message = translation_system_message(code)
    dispatcher = Dispatcher.for_stage(provider.chat_rate, config, ctx, label="Paragraph")

    async def call(index, paragraph):
        request = provider.chat_request(system_message, paragraph)
        return await provider.translate(request)

    print(f"  Sending {len(paragraphs)} paragraph(s) to {provider.name} for translation...")
    responses = await dispatcher.dispatch(paragraphs, call)

    usage = Usage()
    for response in responses:
        usage = usage + response.usage
    return TranslationResult(
        paragraphs=[r.content.strip() for r in responses],
        language=language_label(code),
        language_code=code,
        usage=usage,
        model=responses[0].model if responses else provider.chat_model(),
    )


async def translate_transcript(ctx: RunContext, provider: Provider,
                               transcript: str) -> Optional[TranslationResult]:
    """Translate the transcript when it isn't already in the target language."""
    config = ctx.config
    target = (config.translate_to or "").lower()
    print()
    print("[translate] Translating transcript...")
    if not target:
        print("  Skipped (no target language)")
        return None

    paragraphs = make_paragraphs(transcript)
    if not paragraphs:
        print("  Transcript is empty, nothing to translate")
        return None

    ctx.check_deadline("translation")
    detected = await detect_language(provider, paragraphs[0], config, ctx)
    print(f"  Detected language: {detected['label']} ({detected['value']})")
    if detected["value"] == target:
        print(f"  Transcript is already in {language_label(target)}, skipping")
        return None

    result = await translate_paragraphs(provider, paragraphs, target, config, ctx)
    print(f"  Translated {len(result.paragraphs)} paragraph(s) into {result.language}")
    return result
