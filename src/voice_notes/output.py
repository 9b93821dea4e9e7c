"""Final document assembly.

The pipeline hands a NotesDocument to a DocumentSink. MarkdownSink is the
default and writes notes.md, notes.json, the plain transcript and the
caption track (when there is one) into the output directory.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from voice_notes.shared import (
    tprint as print,
    CAPTIONS_VTT,
    NOTES_JSON,
    NOTES_MD,
    TRANSCRIPT_TXT,
    _save_json,
)
from voice_notes.summarize import ChatDocument
from voice_notes.translate import TranslationResult

SECTION_TITLES = [
    ("main_points", "Main Points"),
    ("action_items", "Action Items"),
    ("follow_up", "Follow-up Questions"),
    ("stories", "Stories"),
    ("references", "References"),
    ("arguments", "Arguments"),
    ("related_topics", "Related Topics"),
]


@dataclass
class NotesDocument:
    """Everything the pipeline produced for one recording."""
    source_name: str
    chat: ChatDocument
    paragraphs: list
    duration: float = 0.0
    translation: Optional[TranslationResult] = None
    vtt: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "source": self.source_name,
            "duration": self.duration,
            "summary": self.chat.to_dict(),
            "transcript": self.paragraphs,
            "translation": asdict(self.translation) if self.translation else None,
            "metadata": self.metadata,
        }


class DocumentSink(Protocol):
    def write(self, document: NotesDocument) -> bool:
        ...


def _format_duration(seconds: float) -> str:
    if not seconds:
        return "unknown"
    minutes, secs = divmod(int(round(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def render_markdown(document: NotesDocument) -> str:
    chat = document.chat
    lines = [f"# {chat.title}", ""]
    details = [f"**Source:** {document.source_name}",
               f"**Duration:** {_format_duration(document.duration)}"]
    if chat.sentiment:
        details.append(f"**Sentiment:** {chat.sentiment}")
    lines += ["  \n".join(details), ""]

    if chat.summary:
        lines += ["## Summary", "", chat.summary, ""]
    for key, heading in SECTION_TITLES:
        items = getattr(chat, key)
        if not items:
            continue
        lines += [f"## {heading}", ""]
        lines += [f"- {item}" for item in items]
        lines.append("")

    if document.translation:
        lines += [f"## Transcript ({document.translation.language})", ""]
        for paragraph in document.translation.paragraphs:
            lines += [paragraph, ""]
        lines += ["## Original Transcript", ""]
    else:
        lines += ["## Transcript", ""]
    for paragraph in document.paragraphs:
        lines += [paragraph, ""]
    return "\n".join(lines).rstrip() + "\n"


class MarkdownSink:
    """Write the document as Markdown + JSON into a directory."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.written: list[Path] = []

    def write(self, document: NotesDocument) -> bool:
        self.output_dir.mkdir(parents=True, exist_ok=True)

        md_path = self.output_dir / NOTES_MD
        md_path.write_text(render_markdown(document))
        json_path = self.output_dir / NOTES_JSON
        _save_json(json_path, document.to_dict())
        txt_path = self.output_dir / TRANSCRIPT_TXT
        txt_path.write_text("\n\n".join(document.paragraphs) + "\n")
        self.written = [md_path, json_path, txt_path]

        if document.vtt:
            vtt_path = self.output_dir / CAPTIONS_VTT
            vtt_path.write_text(document.vtt)
            self.written.append(vtt_path)

        print(f"  Notes saved: {md_path.name}")
        return True
