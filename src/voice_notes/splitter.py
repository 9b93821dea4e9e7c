"""Token-bounded transcript splitting.

The merged transcript is usually far longer than a model's comfortable
context, so it is cut into pieces of at most summary_density tokens. Cuts
are moved to the nearest period within scan_window tokens so sentences
stay whole; with no period in reach the cut stays where it was.
"""

import re
from dataclasses import dataclass
from typing import Optional

import tiktoken

from voice_notes.shared import tprint as print

DEFAULT_ENCODING = "cl100k_base"

# Chinese uses full-width stops with no space after them
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+|(?<=[\u3002\uff01\uff1f])\s*")
_HAN = re.compile(r"[\u4e00-\u9fff]")
_LETTER = re.compile(r"[^\W\d_]")

# Below this many letters the language can't be told apart
MIN_IDENTIFIABLE_LETTERS = 10


class Tokenizer:
    """Thin wrapper over a tiktoken encoding."""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding = tiktoken.get_encoding(encoding_name)

    def encode(self, text: str) -> list[int]:
        return self.encoding.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self.encoding.decode(tokens)

    def count(self, text: str) -> int:
        return len(self.encode(text))


@dataclass(frozen=True)
class PeriodInfo:
    """Longest run of characters between two periods in a transcript.

    longest_gap is -1 when the text contains no period at all.
    """
    longest_gap: int
    longest_gap_text: str
    encoded_gap_length: int = 0


@dataclass(frozen=True)
class SummaryPiece:
    index: int
    text: str
    token_count: int


def find_longest_period_gap(text: str, tokenizer) -> PeriodInfo:
    last = -1
    longest = 0
    longest_text = ""
    for i, ch in enumerate(text):
        if ch != ".":
            continue
        if last != -1 and i - last - 1 > longest:
            longest = i - last - 1
            longest_text = text[last + 1:i]
        last = i
    if last == -1:
        return PeriodInfo(-1, "No period found")
    return PeriodInfo(longest, longest_text, len(tokenizer.encode(longest_text)))


class _PeriodIndex:
    """Memoized 'is this token a period' lookup."""

    def __init__(self, tokenizer):
        self.tokenizer = tokenizer
        self._cache = {}

    def __call__(self, token: int) -> bool:
        hit = self._cache.get(token)
        if hit is None:
            hit = self.tokenizer.decode([token]).strip() == "."
            self._cache[token] = hit
        return hit


def _snap_to_period(tokens: list[int], start: int, proposed: int,
                    window: int, is_period) -> int:
    """Return the cut index nearest to proposed that ends on a period.

    Scans at most window tokens each way, never before start. Equal
    distances go to the earlier period. Returns proposed if nothing is
    found.
    """
    n = len(tokens)
    backward = None
    for pos in range(min(proposed, n - 1), max(start, proposed - window) - 1, -1):
        if is_period(tokens[pos]):
            backward = pos
            break
    forward = None
    for pos in range(proposed, min(n - 1, proposed + window) + 1):
        if is_period(tokens[pos]):
            forward = pos
            break

    if backward is not None and (forward is None or proposed - backward <= forward - proposed):
        return backward + 1
    if forward is not None:
        return forward + 1
    return proposed


def split_transcript(tokens: list[int], max_tokens: int, tokenizer,
                     period_info: Optional[PeriodInfo] = None,
                     scan_window: int = 100) -> list[SummaryPiece]:
    """Split a token stream into pieces of about max_tokens, ending on sentence ends."""
    if max_tokens < 1:
        raise ValueError("max_tokens must be positive")
    if period_info is not None and period_info.encoded_gap_length > max_tokens:
        print(f"  Warning: the longest sentence is {period_info.encoded_gap_length} tokens, "
              f"more than the {max_tokens}-token piece size; it will be split mid-sentence")

    snap = period_info is None or period_info.longest_gap != -1
    is_period = _PeriodIndex(tokenizer)
    n = len(tokens)
    pieces = []
    current = 0
    while current < n:
        proposed = min(current + max_tokens, n)
        end = proposed
        if snap and proposed < n and scan_window > 0:
            end = _snap_to_period(tokens, current, proposed, scan_window, is_period)
        piece = tokens[current:end]
        pieces.append(SummaryPiece(index=len(pieces), text=tokenizer.decode(piece),
                                   token_count=len(piece)))
        current = end
    return pieces


def split_text(text: str, max_tokens: int, tokenizer=None,
               scan_window: int = 100) -> list[SummaryPiece]:
    """Encode, measure and split a transcript in one call."""
    tokenizer = tokenizer or Tokenizer()
    period_info = find_longest_period_gap(text, tokenizer)
    return split_transcript(tokenizer.encode(text), max_tokens, tokenizer,
                            period_info, scan_window)


def _wrap(paragraph: str, max_length: int) -> list[str]:
    """Break an over-long paragraph at word boundaries."""
    out = []
    line = ""
    for word in paragraph.split():
        while len(word) > max_length:
            if line:
                out.append(line)
                line = ""
            out.append(word[:max_length])
            word = word[max_length:]
        if not word:
            continue
        candidate = f"{line} {word}" if line else word
        if len(candidate) > max_length:
            out.append(line)
            line = word
        else:
            line = candidate
    if line:
        out.append(line)
    return out


def paragraph_size(text: str) -> int:
    """Sentences per paragraph: 3 for Chinese or unidentifiable text, else 4."""
    letters = _LETTER.findall(text)
    if len(letters) < MIN_IDENTIFIABLE_LETTERS:
        return 3
    han = sum(1 for c in letters if _HAN.match(c))
    return 3 if han * 2 > len(letters) else 4


def make_paragraphs(text: str, max_length: int = 1200,
                    sentences_per_paragraph: Optional[int] = None) -> list[str]:
    """Group sentences into paragraphs of at most max_length characters.

    Without an explicit sentences_per_paragraph the size comes from
    paragraph_size().
    """
    if sentences_per_paragraph is None:
        sentences_per_paragraph = paragraph_size(text)
    sentences = [s.strip() for s in _SENTENCE_BREAK.split(text.strip()) if s.strip()]
    paragraphs = []
    for i in range(0, len(sentences), sentences_per_paragraph):
        paragraph = " ".join(sentences[i:i + sentences_per_paragraph])
        if len(paragraph) > max_length:
            paragraphs.extend(_wrap(paragraph, max_length))
        else:
            paragraphs.append(paragraph)
    return paragraphs
