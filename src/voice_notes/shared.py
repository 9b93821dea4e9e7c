"""
Shared types and utilities for the voice notes pipeline.

Contains PipelineConfig, RunContext, and the helpers used by every stage
module (timestamped printing, external commands, JSON output).
"""

import json
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

import builtins

from voice_notes.errors import MB, ConfigError, DeadlineExceeded


def tprint(*args, **kwargs):
    """Print with [HH:MM:SS] timestamp prefix.

    Carriage-return progress lines (end != newline) are printed bare so
    in-place updates stay readable.
    """
    if kwargs.get("end", "\n") != "\n":
        builtins.print(*args, flush=True, **kwargs)
        return
    stamp = time.strftime("[%H:%M:%S]")
    builtins.print(stamp, *args, flush=True, **kwargs)


print = tprint

SUMMARY_OPTIONS = [
    "Summary", "Main Points", "Action Items", "Follow-up Questions",
    "Stories", "References", "Arguments", "Related Topics", "Sentiment",
]
VERBOSITY_LEVELS = ["Low", "Medium", "High"]

MIN_CHUNK_MB = 2
MAX_CHUNK_MB = 24

# Stop this many seconds before the host deadline so cleanup can finish
DEADLINE_MARGIN = 3.0


@dataclass
class PipelineConfig:
    """Configuration for one transcription + summarization run."""
    audio_path: Path
    output_dir: Path
    transcription_service: str = "openai"
    transcription_model: Optional[str] = None  # None = provider default
    ai_service: str = "openai"
    ai_model: Optional[str] = None
    api_key: Optional[str] = None  # Overrides the provider's environment variable
    summary_options: list = field(default_factory=lambda: [
        "Summary", "Main Points", "Action Items", "Follow-up Questions",
        "Related Topics", "Sentiment"])
    summary_verbosity: str = "Medium"
    summary_density: int = 2750  # Max tokens per summarization piece
    scan_window: int = 100  # Tokens scanned each way for a sentence end
    temperature: float = 0.2
    translate_to: Optional[str] = None  # ISO 639-1 code
    # Chunking
    chunk_size_mb: int = 24
    downsample: bool = False
    strict_duration: bool = False  # Fail if ffprobe cannot read the duration
    max_file_size: int = 700 * MB
    storage_ceiling: int = 1800 * MB
    # Dispatch
    max_concurrent: Optional[int] = None  # None = per-provider default
    min_interval: Optional[float] = None  # seconds between request starts
    api_max_retries: int = 3
    api_initial_backoff: float = 1.0  # seconds
    api_timeout: float = 120.0  # seconds per API attempt
    timeout: Optional[float] = None  # wall-clock limit for the whole run, seconds
    ollama_base_url: str = "http://localhost:11434/v1/"
    verbose: bool = False

    def __post_init__(self):
        if not MIN_CHUNK_MB <= self.chunk_size_mb <= MAX_CHUNK_MB:
            raise ConfigError(
                f"Chunk size must be between {MIN_CHUNK_MB} and {MAX_CHUNK_MB} MB, "
                f"got {self.chunk_size_mb}")
        if self.summary_verbosity not in VERBOSITY_LEVELS:
            raise ConfigError(f"Unknown summary verbosity: {self.summary_verbosity}")
        unknown = set(self.summary_options) - set(SUMMARY_OPTIONS)
        if unknown:
            raise ConfigError(f"Unknown summary option(s): {', '.join(sorted(unknown))}")
        if self.summary_density < 1:
            raise ConfigError("Summary density must be a positive token count")
        if self.scan_window < 0:
            raise ConfigError("Scan window cannot be negative")


# Standard output filenames
TRANSCRIPT_TXT = "transcript.txt"
CAPTIONS_VTT = "captions.vtt"
NOTES_JSON = "notes.json"
NOTES_MD = "notes.md"
CONVERTED_AUDIO = "converted.mp3"
CHUNK_DIR = "chunks"


@dataclass
class RunContext:
    """Per-run paths and deadline.

    Created once by RunContext.create() and passed to every stage. Paths
    are fixed at creation; stages only read them. cleanup() removes the
    work directory and is safe to call more than once.
    """
    config: PipelineConfig
    source_path: Path
    work_dir: Path
    deadline: Optional[float] = None  # time.monotonic() value
    _cleaned: bool = field(default=False, repr=False)

    @classmethod
    def create(cls, config: PipelineConfig, source_path: Path = None) -> "RunContext":
        work_dir = Path(tempfile.mkdtemp(prefix="voice-notes-"))
        deadline = None
        if config.timeout:
            deadline = time.monotonic() + config.timeout
        return cls(config=config, source_path=Path(source_path or config.audio_path),
                   work_dir=work_dir, deadline=deadline)

    @property
    def chunk_dir(self) -> Path:
        return self.work_dir / CHUNK_DIR

    @property
    def converted_path(self) -> Path:
        return self.work_dir / CONVERTED_AUDIO

    def remaining(self) -> Optional[float]:
        """Seconds left before the early-termination point, or None if unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - DEADLINE_MARGIN - time.monotonic()

    def check_deadline(self, stage: str = "") -> None:
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            where = f" during {stage}" if stage else ""
            raise DeadlineExceeded(f"Run deadline reached{where}, stopping early")

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)
            if self.config.verbose:
                print(f"  Cleaned up {self.work_dir}")


def run_command(cmd: list[str], description: str, verbose: bool = False,
                timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run an external command, printing its stderr on failure."""
    if verbose:
        print(f"  Running: {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, capture_output=True, text=True, check=True,
                              timeout=timeout)
    except subprocess.CalledProcessError as e:
        print(f"  Error: {description}")
        print(f"  {e.stderr}")
        raise


def _save_json(path: Path, data) -> None:
    """Write data to a JSON file with standard formatting."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def check_dependencies() -> dict[str, bool]:
    """Check for required external tools."""
    deps = {
        "ffmpeg": False,
        "ffprobe": False,
        "whisper": False,
    }

    for tool in ["ffmpeg", "ffprobe"]:
        deps[tool] = shutil.which(tool) is not None

    try:
        import whisper  # noqa: F401
        deps["whisper"] = True
    except ImportError:
        pass

    return deps
