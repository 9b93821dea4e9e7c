"""Exception types raised by the pipeline.

Everything derives from PipelineError so the CLI can report a single
failure line. Provider SDK exceptions are not wrapped: they pass through
the retry loop unchanged and are classified by dispatch.is_recoverable.
"""


MB = 1024 * 1024


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class PreconditionError(PipelineError):
    """Raised before any provider call when the input cannot be processed."""


class UnsupportedMediaError(PreconditionError):
    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported media type: {extension or '(none)'}")


class FileTooLargeError(PreconditionError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"File is {size / MB:.1f} MB, larger than the "
            f"{limit / MB:.0f} MB limit")


class StorageExceededError(PreconditionError):
    def __init__(self, required: int, limit: int):
        self.required = required
        self.limit = limit
        super().__init__(
            f"Processing needs ~{required / MB:.1f} MB of temporary storage, "
            f"more than the {limit / MB:.0f} MB available")


class DurationUnavailableError(PreconditionError):
    """Duration could not be determined and strict mode is on."""


class SourceMissingError(PreconditionError):
    """The source audio file does not exist."""


class ChunkingError(PipelineError):
    """The segmenting or conversion tool failed."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(f"{message}: {stderr.strip()}" if stderr else message)


class ConfigError(PipelineError):
    """Invalid option values."""


class ProviderConfigError(ConfigError):
    """Unknown provider, or a provider asked for a capability it lacks."""


class StructuredOutputError(PipelineError):
    """Model output could not be recovered as JSON by any repair strategy."""

    def __init__(self, text: str, errors: list):
        self.text = text
        self.errors = errors
        preview = text[:80].replace("\n", " ")
        super().__init__(f"Invalid structured output ({len(errors)} strategies failed): {preview!r}")


class DeadlineExceeded(PipelineError):
    """The run reached its wall-clock deadline."""
