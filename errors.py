"""
Error taxonomy for the Intelligent Podcast Generator.

Every externally visible failure carries a human-readable message and a
transport-neutral ``code`` that an HTTP or CLI layer can map to its own
status codes.
"""

from typing import Optional


class PodcastError(Exception):
    """Base class for all podcast generation and delivery errors."""

    code: str = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"error": self.message, "code": self.code}


class InputError(PodcastError):
    """Missing or invalid request fields."""

    code = "bad_input"


class NotFoundError(PodcastError):
    """Referenced podcast or document does not exist or is not owned by the caller."""

    code = "not_found"


class NotReadyError(PodcastError):
    """Operation requires a ready podcast."""

    code = "conflict"


class MalformedResponseError(PodcastError):
    """A language model returned content that could not be parsed."""


class StageFailure(PodcastError):
    """A whole pipeline stage failed; the generation is aborted."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["stage"] = self.stage
        return data


class SegmentSynthesisError(PodcastError):
    """Synthesis of a single segment or answer failed. Always absorbed locally."""

    def __init__(self, item_id: str, message: str):
        super().__init__(f"Synthesis failed for {item_id}: {message}")
        self.item_id = item_id


class AssemblyError(PodcastError):
    """The downloadable artifact could not be assembled."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NoAudioAvailableError(AssemblyError):
    """No segment of the podcast has an audio asset."""

    code = "not_found"

    def __init__(self, message: str = "No audio available for this podcast"):
        super().__init__(message)
