#!/usr/bin/env python3
"""
Voice Notes
===========
Turns a long audio recording into a transcript plus structured notes.

Pipeline:
1. Plan chunks from the file's size and duration (ffprobe)
2. Convert and split the audio into upload-sized chunks (ffmpeg)
3. Transcribe the chunks concurrently (OpenAI, Groq, Gemini, Deepgram,
   ElevenLabs or local Whisper)
4. Merge chunk transcripts, fixing punctuation at chunk boundaries
5. Split the transcript into token-bounded pieces and summarize them
   concurrently (OpenAI, Anthropic, Gemini, Groq or local Ollama)
6. Aggregate the piece summaries into one document
7. Optionally translate the transcript
8. Write notes.md / notes.json

Usage:
    voice-notes <audio-file> [options]

Examples:
    # OpenAI Whisper + GPT with default summary sections
    voice-notes meeting.m4a

    # Groq for transcription, Anthropic for the summary
    voice-notes lecture.mp3 --transcription-service groqcloud --ai-service anthropic

    # Everything local: Whisper + Ollama
    voice-notes memo.wav --transcription-service whisper --ai-service ollama

    # Pick sections and translate the transcript to German
    voice-notes talk.mp3 --summary-options "Summary,Main Points,Action Items" --translate-to de
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from voice_notes import __version__
from voice_notes.chunking import (
    AudioChunk,
    describe_plan,
    discard_chunks,
    plan_for_file,
    split_audio,
)
from voice_notes.dispatch import Dispatcher
from voice_notes.errors import ConfigError, PipelineError, ProviderConfigError
from voice_notes.merge import merge_results
from voice_notes.normalize import TranscriptionResult
from voice_notes.output import DocumentSink, MarkdownSink, NotesDocument
from voice_notes.providers import PROVIDERS, Provider, get_provider
from voice_notes.shared import (
    tprint as print,
    SUMMARY_OPTIONS,
    VERBOSITY_LEVELS,
    PipelineConfig,
    RunContext,
    check_dependencies,
)
from voice_notes.splitter import make_paragraphs
from voice_notes.summarize import summarize_transcript
from voice_notes.translate import translate_transcript

SECTION_SEPARATOR = "=" * 50

TRANSCRIPTION_SERVICES = sorted(n for n, cls in PROVIDERS.items() if cls.transcription_rate)
AI_SERVICES = sorted(n for n, cls in PROVIDERS.items() if cls.chat_rate)


async def transcribe_chunks(ctx: RunContext, provider: Provider,
                            chunks: list[AudioChunk]) -> list[TranscriptionResult]:
    """Transcribe every chunk. Any chunk that still fails after retries fails the run."""
    print()
    print("[transcribe] Transcribing audio...")
    print(f"  Using model: {provider.transcription_model()} ({provider.name})")
    dispatcher = Dispatcher.for_stage(provider.transcription_rate, ctx.config, ctx,
                                      label="Chunk")

    async def call(index, chunk):
        request = provider.transcription_request(chunk.path)
        return await provider.transcribe(request, index=chunk.index)

    results = await dispatcher.dispatch(chunks, call)
    words = sum(len(r.text.split()) for r in results)
    print(f"  Transcribed {len(results)} chunk(s), {words:,} words")
    return results


def resolve_providers(config: PipelineConfig) -> tuple[Provider, Provider]:
    """Instantiate and validate the transcription and language-model providers."""
    transcriber = get_provider(config.transcription_service, config)
    if not transcriber.supports_transcription:
        raise ProviderConfigError(f"{transcriber.name} cannot transcribe audio")
    llm = get_provider(config.ai_service, config)
    if not llm.supports_chat:
        raise ProviderConfigError(f"{llm.name} cannot summarize text")
    transcriber.check_credentials()
    llm.check_credentials()
    return transcriber, llm


async def run_pipeline(config: PipelineConfig, sink: Optional[DocumentSink] = None,
                       providers: Optional[tuple[Provider, Provider]] = None) -> NotesDocument:
    """Run every stage for one file. Temporary files are removed however the run ends."""
    transcriber, llm = providers or resolve_providers(config)
    ctx = RunContext.create(config)
    try:
        print()
        print("[plan] Planning chunks...")
        plan = await asyncio.to_thread(plan_for_file, ctx)
        describe_plan(plan, config)

        ctx.check_deadline("chunking")
        print()
        print("[split] Preparing audio chunks...")
        chunks = await asyncio.to_thread(split_audio, ctx, plan)

        ctx.check_deadline("transcription")
        results = await transcribe_chunks(ctx, transcriber, chunks)
        discard_chunks(ctx)

        print()
        print("[merge] Merging chunk transcripts...")
        durations = plan.segment_durations() if plan.duration else None
        merged = merge_results(results, durations)
        print(f"  Transcript: {len(merged.text):,} characters")

        ctx.check_deadline("summarization")
        chat = await summarize_transcript(ctx, llm, merged.text)

        translation = None
        if config.translate_to:
            translation = await translate_transcript(ctx, llm, merged.text)

        document = NotesDocument(
            source_name=ctx.source_path.name,
            chat=chat,
            paragraphs=make_paragraphs(merged.text),
            duration=plan.duration,
            translation=translation,
            vtt=merged.vtt,
            metadata={
                "transcription": {"service": transcriber.name,
                                  "model": transcriber.transcription_model()},
                "summary": {"service": llm.name, "model": llm.chat_model()},
                "chunks": len(chunks),
                "tokens": chat.tokens + (translation.usage.total_tokens if translation else 0),
            },
        )

        print()
        print("[output] Writing notes...")
        sink = sink or MarkdownSink(config.output_dir)
        if not sink.write(document):
            raise PipelineError("Document sink reported a failure")
        return document
    finally:
        ctx.cleanup()


def _parse_options(value: str) -> list:
    options = [o.strip() for o in value.split(",") if o.strip()]
    lookup = {o.lower(): o for o in SUMMARY_OPTIONS}
    resolved = []
    for option in options:
        if option.lower() not in lookup:
            raise ConfigError(f"Unknown summary option: {option}. "
                              f"Valid options: {', '.join(SUMMARY_OPTIONS)}")
        resolved.append(lookup[option.lower()])
    return resolved


def main():
    parser = argparse.ArgumentParser(
        description="Transcribe and summarize long audio recordings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("audio", help="Path to the audio file")
    parser.add_argument("-o", "--output-dir",
                        help="Output directory (default: <audio name>_notes)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    providers = parser.add_argument_group("providers")
    providers.add_argument("--transcription-service", default="openai",
                           choices=TRANSCRIPTION_SERVICES,
                           help="Speech-to-text provider (default: openai)")
    providers.add_argument("--transcription-model",
                           help="Transcription model (default: provider's default)")
    providers.add_argument("--ai-service", default="openai", choices=AI_SERVICES,
                           help="Language model provider for summaries (default: openai)")
    providers.add_argument("--ai-model", help="Language model (default: provider's default)")
    providers.add_argument("--api-key",
                           help="API key (default: the provider's environment variable)")
    providers.add_argument("--ollama-url", default="http://localhost:11434/v1/",
                           help="Ollama API base URL (default: http://localhost:11434/v1/)")

    summary = parser.add_argument_group("summary")
    summary.add_argument("--summary-options",
                         default="Summary,Main Points,Action Items,Follow-up Questions,"
                                 "Related Topics,Sentiment",
                         help=f"Comma-separated sections. Valid: {', '.join(SUMMARY_OPTIONS)}")
    summary.add_argument("--summary-verbosity", default="Medium", choices=VERBOSITY_LEVELS,
                         help="Summary length (default: Medium)")
    summary.add_argument("--summary-density", type=int, default=2750,
                         help="Max tokens per summarized piece (default: 2750)")
    summary.add_argument("--scan-window", type=int, default=100,
                         help="Tokens searched each way for a sentence end when splitting "
                              "(default: 100)")
    summary.add_argument("--temperature", type=float, default=0.2,
                         help="Model temperature (default: 0.2)")
    summary.add_argument("--translate-to", metavar="CODE",
                         help="Translate the transcript into this ISO 639-1 language")

    audio = parser.add_argument_group("audio")
    audio.add_argument("--chunk-size", type=int, default=24,
                       help="Target chunk size in MB, 2-24 (default: 24)")
    audio.add_argument("--downsample", action="store_true",
                       help="Convert to 16 kHz mono MP3 before splitting")
    audio.add_argument("--strict-duration", action="store_true",
                       help="Fail if the audio duration cannot be read")

    dispatch = parser.add_argument_group("dispatch")
    dispatch.add_argument("--max-concurrent", type=int,
                          help="Override the provider's concurrent request limit")
    dispatch.add_argument("--min-interval", type=float,
                          help="Override the minimum seconds between request starts")
    dispatch.add_argument("--retries", type=int, default=3,
                          help="Attempts per request (default: 3)")
    dispatch.add_argument("--api-timeout", type=float, default=120.0,
                          help="Seconds per API attempt (default: 120)")
    dispatch.add_argument("--timeout", type=float,
                          help="Wall-clock limit for the whole run, in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    audio_path = Path(args.audio)
    output_dir = Path(args.output_dir) if args.output_dir else Path(f"{audio_path.stem}_notes")

    try:
        config = PipelineConfig(
            audio_path=audio_path,
            output_dir=output_dir,
            transcription_service=args.transcription_service,
            transcription_model=args.transcription_model,
            ai_service=args.ai_service,
            ai_model=args.ai_model,
            api_key=args.api_key,
            summary_options=_parse_options(args.summary_options),
            summary_verbosity=args.summary_verbosity,
            summary_density=args.summary_density,
            scan_window=args.scan_window,
            temperature=args.temperature,
            translate_to=args.translate_to,
            chunk_size_mb=args.chunk_size,
            downsample=args.downsample,
            strict_duration=args.strict_duration,
            max_concurrent=args.max_concurrent,
            min_interval=args.min_interval,
            api_max_retries=args.retries,
            api_timeout=args.api_timeout,
            timeout=args.timeout,
            ollama_base_url=args.ollama_url,
            verbose=args.verbose,
        )
        providers = resolve_providers(config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    deps = check_dependencies()
    if not deps["ffmpeg"]:
        print("Warning: ffmpeg not found; only single-chunk files in supported formats will work")
    if not deps["ffprobe"]:
        print("Warning: ffprobe not found; audio duration will be unknown")

    print(f"Processing: {audio_path}")
    print(f"Output directory: {output_dir}")
    print(f"  Transcription: {providers[0].name} ({providers[0].transcription_model()})")
    print(f"  Summary: {providers[1].name} ({providers[1].chat_model()})")

    try:
        document = asyncio.run(run_pipeline(config, providers=providers))
    except Exception as e:
        print()
        print(f"Error: {e}")
        if config.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    print()
    print(SECTION_SEPARATOR)
    print("COMPLETE!")
    print(SECTION_SEPARATOR)
    print()
    print(f"Title: {document.chat.title}")
    print(f"Output directory: {config.output_dir}")
    print(f"Tokens used: {document.metadata['tokens']:,}")


if __name__ == "__main__":
    main()
