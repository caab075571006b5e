"""Exception hierarchy for the generation pipeline.

Every error carries the name of the pipeline stage that raised it so that
log lines and CLI messages can say where a run failed.
"""

from __future__ import annotations

from typing import Optional


class MCPEverythingError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, stage: str = "pipeline"):
        super().__init__(message)
        self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class LLMClientError(MCPEverythingError):
    """Raised when a model API call fails."""

    pass


class LLMRateLimitError(LLMClientError):
    """Raised when the model API keeps rejecting calls with HTTP 429."""

    pass


class RepositoryAnalysisError(MCPEverythingError):
    """Raised when a repository cannot be analyzed."""

    def __init__(self, message: str, stage: str = "analysis"):
        super().__init__(message, stage)


class InvalidRepositoryUrlError(RepositoryAnalysisError):
    """Raised for URLs that do not point at a GitHub repository."""

    pass


class ToolDiscoveryError(MCPEverythingError):
    """Raised when tool discovery cannot produce a result."""

    def __init__(self, message: str, code: str = "AI_FAILURE", stage: str = "discovery"):
        super().__init__(message, stage)
        self.code = code


class RegenerationExhaustedError(MCPEverythingError):
    """Raised when a candidate is still rejected after the last regeneration."""

    def __init__(self, stage: str, attempts: int, feedback: Optional[str] = None):
        message = f"Failed to produce a valid result after {attempts} attempts"
        if feedback:
            message += f": {feedback}"
        super().__init__(message, stage)
        self.attempts = attempts
        self.feedback = feedback or ""


class QuotaExceededError(MCPEverythingError):
    """Raised when a tier's monthly generation quota is used up."""

    def __init__(self, message: str):
        super().__init__(message, stage="quota")


class InvalidOutputPathError(MCPEverythingError):
    """Raised when an output folder name would leave the output directory."""

    def __init__(self, message: str):
        super().__init__(message, stage="packaging")
