"""Stitch per-chunk transcripts into one transcript.

Chunk boundaries fall at arbitrary points in the audio, so a sentence
split across two chunks usually comes back as "... the end." followed by
"of the sentence ...". merge_transcripts() drops that spurious terminal
punctuation. Caption tracks are renumbered and shifted onto one timeline.
"""

import re
from dataclasses import dataclass
from typing import Optional

from voice_notes.normalize import TranscriptionResult, format_timestamp
from voice_notes.shared import tprint as print

TERMINAL_PUNCTUATION = ".!?"

_CUE_TIMING = re.compile(
    r"(\d{1,2}:)?(\d{2}):(\d{2})[.,](\d{3})\s*-->\s*(\d{1,2}:)?(\d{2}):(\d{2})[.,](\d{3})")


@dataclass
class MergedTranscript:
    text: str
    vtt: Optional[str] = None


def detect_repetition_loops(text: str, min_repeats: int = 4,
                            max_phrase_words: int = 10) -> list[dict]:
    """Find runs where a short phrase repeats back to back.

    Whisper sometimes gets stuck emitting the same phrase over silence.
    Returns dicts with keys: phrase, count, start_word.
    """
    loops = []
    words = text.split()
    n = len(words)
    i = 0
    while i < n:
        found = None
        # Shortest repeating phrase wins
        for phrase_len in range(1, min(max_phrase_words, (n - i) // min_repeats) + 1):
            phrase = words[i:i + phrase_len]
            count = 1
            j = i + phrase_len
            while j + phrase_len <= n and words[j:j + phrase_len] == phrase:
                count += 1
                j += phrase_len
            if count >= min_repeats:
                found = (phrase_len, count)
                break
        if found:
            phrase_len, count = found
            loops.append({"phrase": " ".join(words[i:i + phrase_len]),
                          "count": count, "start_word": i})
            i += phrase_len * count
        else:
            i += 1
    return loops


def collapse_repetition_loops(text: str, min_repeats: int = 4,
                              max_phrase_words: int = 10) -> tuple[str, list[dict]]:
    """Keep two occurrences of each repetition loop. Returns (text, loops)."""
    loops = detect_repetition_loops(text, min_repeats, max_phrase_words)
    if not loops:
        return text, []

    words = text.split()
    kept = []
    i = 0
    for loop in loops:
        phrase_words = loop["phrase"].split()
        kept.extend(words[i:loop["start_word"]])
        kept.extend(phrase_words * 2)
        i = loop["start_word"] + len(phrase_words) * loop["count"]
    kept.extend(words[i:])
    return " ".join(kept), loops


def merge_transcripts(results: list[TranscriptionResult]) -> str:
    """Join chunk transcripts in chunk order.

    When a chunk ends in terminal punctuation and the next chunk starts
    with a lower-case letter, the punctuation is a boundary artifact and
    is dropped.
    """
    texts = [r.text.strip() for r in sorted(results, key=lambda r: r.index)]
    texts = [t for t in texts if t]
    parts = []
    for i, text in enumerate(texts):
        following = texts[i + 1] if i + 1 < len(texts) else ""
        if following and text[-1] in TERMINAL_PUNCTUATION and following[0].islower():
            text = text[:-1]
        parts.append(text)
    return " ".join(parts).strip()


def _to_seconds(hours, minutes, seconds, millis) -> float:
    h = int(hours.rstrip(":")) if hours else 0
    return h * 3600 + int(minutes) * 60 + int(seconds) + int(millis) / 1000


def _parse_cues(track: str) -> list[tuple[float, float, list[str]]]:
    """Extract (start, end, text lines) from a WebVTT or SRT track.

    Headers, NOTE blocks and cue numbers are discarded.
    """
    cues = []
    for block in re.split(r"\n\s*\n", track.replace("\r\n", "\n")):
        lines = [line.strip() for line in block.strip().split("\n") if line.strip()]
        for pos, line in enumerate(lines):
            m = _CUE_TIMING.search(line)
            if m:
                start = _to_seconds(*m.group(1, 2, 3, 4))
                end = _to_seconds(*m.group(5, 6, 7, 8))
                cues.append((start, end, lines[pos + 1:]))
                break
    return cues


def combine_vtt(tracks: list[str], offsets: Optional[list[float]] = None) -> str:
    """Concatenate per-chunk caption tracks into one WebVTT track.

    offsets[i] is added to every timestamp of track i (chunks restart at
    zero). Cues are renumbered from 1.
    """
    if offsets is None:
        offsets = [0.0] * len(tracks)
    lines = ["WEBVTT", ""]
    number = 0
    for track, offset in zip(tracks, offsets):
        for start, end, text in _parse_cues(track):
            number += 1
            lines.append(str(number))
            lines.append(f"{format_timestamp(start + offset)} --> {format_timestamp(end + offset)}")
            lines.extend(text)
            lines.append("")
    return "\n".join(lines)


def _chunk_duration(result: TranscriptionResult) -> float:
    duration = result.metadata.get("duration")
    if duration:
        return float(duration)
    if result.segments:
        return float(result.segments[-1].get("end", 0))
    return 0.0


def merge_results(results: list[TranscriptionResult],
                  chunk_durations: Optional[list[float]] = None) -> MergedTranscript:
    """Collapse Whisper loops per chunk, then merge text and captions."""
    results = sorted(results, key=lambda r: r.index)
    cleaned = []
    for result in results:
        text, loops = collapse_repetition_loops(result.text)
        if loops:
            removed = sum(len(l["phrase"].split()) * (l["count"] - 2) for l in loops)
            print(f"  Chunk {result.index}: collapsed {len(loops)} repetition loop(s) "
                  f"({removed} words removed)")
        cleaned.append(TranscriptionResult(index=result.index, text=text, vtt=result.vtt,
                                           segments=result.segments, metadata=result.metadata))

    text = merge_transcripts(cleaned)

    vtt = None
    if results and all(r.vtt for r in results):
        if chunk_durations is None or len(chunk_durations) != len(results):
            chunk_durations = [_chunk_duration(r) for r in results]
        offsets = []
        elapsed = 0.0
        for duration in chunk_durations:
            offsets.append(elapsed)
            elapsed += duration
        vtt = combine_vtt([r.vtt for r in results], offsets)

    return MergedTranscript(text=text, vtt=vtt)
