"""Chunk planning and audio segmentation.

Speech-to-text APIs cap upload size, so long recordings are cut into
ordinal chunk files with ffmpeg before transcription. plan_chunks() is
pure arithmetic over the file's size and duration; split_audio() does the
file work described by the plan.
"""

import math
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from voice_notes.errors import (
    MB,
    ChunkingError,
    ConfigError,
    DeadlineExceeded,
    DurationUnavailableError,
    FileTooLargeError,
    SourceMissingError,
    StorageExceededError,
    UnsupportedMediaError,
)
from voice_notes.shared import (
    tprint as print,
    MAX_CHUNK_MB,
    MIN_CHUNK_MB,
    PipelineConfig,
    RunContext,
    run_command,
)

# Formats the transcription APIs accept as-is
DIRECT_FORMATS = {".flac", ".mp3", ".m4a", ".wav", ".mp4", ".mpeg", ".mpga", ".webm"}
# Formats ffmpeg can read but that must be converted before upload
CONVERTIBLE_FORMATS = {".ogg", ".oga", ".opus", ".aac", ".wma", ".aiff", ".amr"}

# 16 kHz mono MP3 at 32 kbps
CONVERTED_SAMPLE_RATE = 16000
CONVERTED_BITRATE = "32k"
CONVERTED_BYTES_PER_SECOND = 4000

CHUNK_FLOOR = MIN_CHUNK_MB * MB
CHUNK_OVERHEAD = 1.1
CHUNK_PATTERN = "chunk-%03d"


@dataclass(frozen=True)
class ChunkPlan:
    """How one audio file will be cut up. Computed once, never mutated."""
    duration: float
    file_size: int
    estimated_size: int
    target_chunk_size: int
    chunk_count: int
    adjusted_chunk_size: int
    needs_conversion: bool
    storage_required: int

    @property
    def bitrate(self) -> float:
        """Bits per second of the audio that will be segmented."""
        if self.duration <= 0:
            return 0.0
        return self.estimated_size * 8 / self.duration

    @property
    def segment_duration(self) -> int:
        """Seconds per segment handed to ffmpeg's segment muxer."""
        if self.chunk_count <= 1 or self.bitrate <= 0:
            return math.ceil(self.duration)
        return math.ceil(self.adjusted_chunk_size * 8 / self.bitrate)

    def segment_durations(self) -> list[float]:
        """Durations of the segments ffmpeg will produce, in order."""
        if self.duration <= 0:
            return [0.0]
        step = self.segment_duration
        durations = []
        remaining = self.duration
        while remaining > 1e-9:
            piece = min(step, remaining)
            durations.append(piece)
            remaining -= piece
        return durations

    def chunk_sizes(self) -> list[int]:
        """Estimated byte size of each chunk, spread evenly."""
        base, extra = divmod(self.estimated_size, self.chunk_count)
        return [base + (1 if i < extra else 0) for i in range(self.chunk_count)]


@dataclass(frozen=True)
class AudioChunk:
    index: int
    path: Path
    size: int


def check_media_type(extension: str, downsample: bool = False) -> bool:
    """Return True if the file must be converted before upload.

    Raises UnsupportedMediaError for formats neither the providers nor the
    converter handle.
    """
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    if ext in CONVERTIBLE_FORMATS:
        return True
    if ext in DIRECT_FORMATS:
        return downsample
    raise UnsupportedMediaError(ext)


def plan_chunks(file_size: int, duration: Optional[float], extension: str,
                target_chunk_mb: int = MAX_CHUNK_MB,
                downsample: bool = False,
                strict_duration: bool = False,
                max_file_size: int = 700 * MB,
                storage_ceiling: int = 1800 * MB) -> ChunkPlan:
    """Decide conversion and chunk count for one file.

    Validation happens in the order the checks are cheapest: media type,
    file size, chunk size bounds, duration, then the temp storage ceiling.
    """
    needs_conversion = check_media_type(extension, downsample)

    if file_size > max_file_size:
        raise FileTooLargeError(file_size, max_file_size)

    if not MIN_CHUNK_MB <= target_chunk_mb <= MAX_CHUNK_MB:
        raise ConfigError(
            f"Chunk size must be between {MIN_CHUNK_MB} and {MAX_CHUNK_MB} MB, "
            f"got {target_chunk_mb}")
    target = target_chunk_mb * MB

    if not duration or duration <= 0:
        if strict_duration:
            raise DurationUnavailableError(
                "Could not determine the audio duration. Check that the file "
                "is a valid audio file, or disable strict duration checking.")
        duration = 0.0

    if needs_conversion and duration:
        estimated = math.ceil(duration * CONVERTED_BYTES_PER_SECOND)
        converted = estimated
    else:
        estimated = file_size
        converted = file_size if needs_conversion else 0

    storage_required = math.ceil(file_size + converted + estimated * CHUNK_OVERHEAD)
    if storage_required > storage_ceiling:
        raise StorageExceededError(storage_required, storage_ceiling)

    if duration:
        count = max(1, math.ceil(estimated / target))
        if count > 1 and estimated / count < CHUNK_FLOOR:
            count = max(1, estimated // CHUNK_FLOOR)
    else:
        # Without a duration there is no bitrate to derive segment times from
        count = 1
    adjusted = math.ceil(estimated / count)

    return ChunkPlan(
        duration=float(duration),
        file_size=file_size,
        estimated_size=estimated,
        target_chunk_size=target,
        chunk_count=count,
        adjusted_chunk_size=adjusted,
        needs_conversion=needs_conversion,
        storage_required=storage_required,
    )


def probe_duration(path: Path, verbose: bool = False) -> Optional[float]:
    """Read the duration in seconds with ffprobe; None if it can't be read."""
    if shutil.which("ffprobe") is None:
        return None
    cmd = ["ffprobe", "-v", "error",
           "-show_entries", "format=duration",
           "-of", "default=noprint_wrappers=1:nokey=1",
           str(path)]
    try:
        result = run_command(cmd, f"reading duration of {path.name}", verbose)
        value = float(result.stdout.strip())
    except (subprocess.CalledProcessError, ValueError):
        return None
    return value if value > 0 else None


def plan_for_file(ctx: RunContext, duration: Optional[float] = None) -> ChunkPlan:
    """Stat the run's source file and plan its chunks."""
    config = ctx.config
    path = ctx.source_path
    if not path.exists():
        raise SourceMissingError(f"Audio file not found: {path}")
    if duration is None:
        duration = probe_duration(path, config.verbose)
    return plan_chunks(
        path.stat().st_size, duration, path.suffix,
        target_chunk_mb=config.chunk_size_mb,
        downsample=config.downsample,
        strict_duration=config.strict_duration,
        max_file_size=config.max_file_size,
        storage_ceiling=config.storage_ceiling,
    )


def _run_ffmpeg(cmd: list[str], description: str, ctx: RunContext) -> None:
    """Run ffmpeg bounded by the run deadline, mapping failures to ChunkingError."""
    ctx.check_deadline(description)
    try:
        run_command(cmd, description, ctx.config.verbose, timeout=ctx.remaining())
    except subprocess.TimeoutExpired:
        raise DeadlineExceeded(f"Run deadline reached while {description}")
    except subprocess.CalledProcessError as e:
        raise ChunkingError(f"ffmpeg failed while {description}", e.stderr or "")
    except FileNotFoundError:
        raise ChunkingError("ffmpeg is not installed or not on PATH")


def convert_audio(source: Path, dest: Path, ctx: RunContext) -> Path:
    """Downsample to 16 kHz mono MP3."""
    cmd = ["ffmpeg", "-y", "-i", str(source), "-vn",
           "-ar", str(CONVERTED_SAMPLE_RATE), "-ac", "1",
           "-b:a", CONVERTED_BITRATE, str(dest)]
    _run_ffmpeg(cmd, f"converting {source.name}", ctx)
    return dest


def split_audio(ctx: RunContext, plan: ChunkPlan) -> list[AudioChunk]:
    """Cut the source into ordered chunk files in ctx.chunk_dir.

    The converted intermediate file is removed whether or not segmenting
    succeeds.
    """
    source = ctx.source_path
    if not source.exists():
        raise SourceMissingError(f"Audio file not found: {source}")

    chunk_dir = ctx.chunk_dir
    chunk_dir.mkdir(parents=True, exist_ok=True)

    converted = None
    try:
        if plan.needs_conversion:
            print(f"  Converting {source.name} to 16 kHz mono MP3...")
            converted = convert_audio(source, ctx.converted_path, ctx)
        audio = converted or source
        ext = audio.suffix.lower()

        if plan.chunk_count <= 1:
            target = chunk_dir / f"chunk-000{ext}"
            shutil.copyfile(audio, target)
        else:
            print(f"  Splitting into ~{plan.chunk_count} chunks of "
                  f"{plan.segment_duration}s each...")
            cmd = ["ffmpeg", "-y", "-i", str(audio),
                   "-f", "segment", "-segment_time", str(plan.segment_duration),
                   "-c", "copy", "-reset_timestamps", "1", "-map", "0:a:0",
                   str(chunk_dir / f"{CHUNK_PATTERN}{ext}")]
            _run_ffmpeg(cmd, f"splitting {audio.name}", ctx)
    finally:
        if converted is not None and converted.exists():
            converted.unlink()

    chunks = list_chunks(chunk_dir)
    if not chunks:
        raise ChunkingError(f"No chunks were produced in {chunk_dir}")
    print(f"  Created {len(chunks)} chunk(s)")
    return chunks


def _chunk_ordinal(path: Path) -> int:
    return int(path.stem.split("-", 1)[1])


def list_chunks(chunk_dir: Path) -> list[AudioChunk]:
    """Collect chunk files sorted by ordinal, checking the ordinals are contiguous."""
    paths = [p for p in chunk_dir.glob("chunk-*") if p.is_file()]
    paths.sort(key=_chunk_ordinal)
    chunks = []
    for expected, path in enumerate(paths):
        index = _chunk_ordinal(path)
        if index != expected:
            raise ChunkingError(f"Chunk ordinals are not contiguous: missing chunk {expected}")
        chunks.append(AudioChunk(index=index, path=path, size=path.stat().st_size))
    return chunks


def describe_plan(plan: ChunkPlan, config: PipelineConfig) -> None:
    """Print the plan in the stage log."""
    if plan.duration:
        print(f"  Duration: {plan.duration / 60:.1f} min")
    else:
        print("  Duration: unknown (treating as a single chunk)")
    print(f"  File size: {plan.file_size / MB:.1f} MB"
          + (" (will be converted)" if plan.needs_conversion else ""))
    if config.verbose:
        print(f"  Estimated size: {plan.estimated_size / MB:.1f} MB, "
              f"temp storage needed: {plan.storage_required / MB:.1f} MB")
    print(f"  Chunks: {plan.chunk_count} x ~{plan.adjusted_chunk_size / MB:.1f} MB")


def discard_chunks(ctx: RunContext) -> None:
    """Delete chunk files once they have been transcribed."""
    if ctx.chunk_dir.exists():
        shutil.rmtree(ctx.chunk_dir, ignore_errors=True)
