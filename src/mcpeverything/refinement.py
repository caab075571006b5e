"""Bounded generate, validate and regenerate loop.

Tool discovery and server code generation both run their candidates
through this loop with different validators: a judge quality score for
tools, a static check plus judge verdict for server code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Generic, Optional, TypeVar

from .errors import RegenerationExhaustedError

if TYPE_CHECKING:
    from .run_logger import RunLogger

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Verdict:
    """Result of validating one candidate."""

    passed: bool
    feedback: str = ""
    score: Optional[float] = None
    # Validators may stop the loop early, e.g. when a judge rules a tool invalid
    terminal: bool = False
    details: object = None


@dataclass
class AttemptRecord:
    """One generate/validate round."""

    attempt: int
    passed: bool
    feedback: str
    score: Optional[float] = None


@dataclass
class RefinementOutcome(Generic[T]):
    """Final candidate and the history that produced it."""

    value: T
    passed: bool
    attempts: int
    verdict: Verdict
    history: list[AttemptRecord] = field(default_factory=list)

    @property
    def regenerations(self) -> int:
        return max(0, self.attempts - 1)


class RefinementLoop(Generic[T]):
    """Run generate -> validate -> {pass: done, fail: regenerate}.

    The loop makes at most ``max_regenerations + 1`` generations. Every
    regeneration receives the previous candidate and the feedback of the
    validation that rejected it.
    """

    def __init__(
        self,
        stage: str,
        generate: Callable[[], T],
        validate: Callable[[T], Verdict],
        regenerate: Callable[[T, Verdict, int], T],
        max_regenerations: int = 3,
        raise_on_exhaustion: bool = True,
        run_logger: Optional[RunLogger] = None,
    ):
        """Initialize the loop.

        Args:
            stage: Pipeline stage name used in logs and errors.
            generate: Produces the first candidate.
            validate: Judges a candidate.
            regenerate: Produces a new candidate from the rejected one, its
                verdict and the 1-indexed number of the attempt being made.
            max_regenerations: Regenerations allowed after the first attempt.
            raise_on_exhaustion: Raise RegenerationExhaustedError instead of
                returning a failed outcome when no candidate passes.
            run_logger: Optional run logger for attempt records.
        """
        if max_regenerations < 0:
            raise ValueError("max_regenerations must not be negative")
        self.stage = stage
        self.generate = generate
        self.validate = validate
        self.regenerate = regenerate
        self.max_regenerations = max_regenerations
        self.raise_on_exhaustion = raise_on_exhaustion
        self.run_logger = run_logger

    def run(self) -> RefinementOutcome[T]:
        """Run until a candidate passes or the budget is spent.

        Returns:
            The outcome; ``passed`` is False only when not raising on exhaustion.

        Raises:
            RegenerationExhaustedError: If no candidate passed and
                ``raise_on_exhaustion`` is set.
        """
        history: list[AttemptRecord] = []
        candidate: Optional[T] = None
        verdict: Optional[Verdict] = None
        max_attempts = self.max_regenerations + 1

        for attempt in range(1, max_attempts + 1):
            if attempt == 1:
                logger.info(f"[{self.stage}] Generating candidate (attempt 1/{max_attempts})")
                candidate = self.generate()
            else:
                logger.info(
                    f"[{self.stage}] Regenerating with feedback (attempt {attempt}/{max_attempts})"
                )
                candidate = self.regenerate(candidate, verdict, attempt)

            verdict = self.validate(candidate)
            history.append(AttemptRecord(attempt, verdict.passed, verdict.feedback, verdict.score))
            if self.run_logger is not None:
                self.run_logger.log_attempt(
                    self.stage, attempt, verdict.passed, verdict.feedback, verdict.score
                )

            if verdict.passed:
                logger.info(f"[{self.stage}] Candidate passed validation after {attempt} attempt(s)")
                return RefinementOutcome(candidate, True, attempt, verdict, history)

            logger.warning(f"[{self.stage}] Validation failed (attempt {attempt}): {verdict.feedback}")

            if verdict.terminal:
                logger.debug(f"[{self.stage}] Validator rejected candidate as terminal")
                break

        attempts = len(history)
        if self.raise_on_exhaustion:
            raise RegenerationExhaustedError(self.stage, attempts, verdict.feedback if verdict else None)
        return RefinementOutcome(candidate, False, attempts, verdict, history)
