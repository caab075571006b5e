"""Structured logging for generation runs.

Each run of the pipeline gets a JSON log file recording the stages it went
through, every generate/validate attempt, every model API call and every
error, plus aggregate statistics.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .json_utils import sanitize_error
from .tokens import estimate_cost, format_token_count

logger = logging.getLogger(__name__)


@dataclass
class APICallLog:
    """Log entry for a model API call."""

    timestamp: str
    stage: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    success: bool = True
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RunStats:
    """Statistics for a generation run."""

    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    stages_completed: int = 0
    attempts: int = 0
    attempts_passed: int = 0
    tools_discovered: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    api_calls: list[APICallLog] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        """Get total tokens used."""
        return self.total_input_tokens + self.total_output_tokens

    @property
    def duration_seconds(self) -> float:
        """Get duration in seconds."""
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    @property
    def failed_calls(self) -> int:
        return sum(1 for call in self.api_calls if not call.success)

    @property
    def estimated_cost(self) -> float:
        """Estimated dollar cost of every recorded call."""
        return sum(
            estimate_cost(call.input_tokens, call.output_tokens, call.model) for call in self.api_calls
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "stages_completed": self.stages_completed,
            "attempts": {
                "total": self.attempts,
                "passed": self.attempts_passed,
            },
            "tools_discovered": self.tools_discovered,
            "tokens": {
                "input": self.total_input_tokens,
                "output": self.total_output_tokens,
                "total": self.total_tokens,
            },
            "api_calls": {
                "total": len(self.api_calls),
                "failed": self.failed_calls,
            },
            "estimated_cost": round(self.estimated_cost, 6),
        }


class RunLogger:
    """Logger for a single generation run."""

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        run_name: str = "generation",
        persist: bool = True,
    ):
        """Initialize the run logger.

        Args:
            log_dir: Directory for log files. Defaults to logs/generations.
            run_name: Name of the run, usually the repository's full name.
            persist: If False, nothing is written to disk.
        """
        self.log_dir = log_dir or Path("logs/generations")
        self.run_name = run_name
        self.persist = persist
        self.stats = RunStats()

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        safe_name = "".join(c if c.isalnum() else "_" for c in run_name[:40])
        self.log_file = self.log_dir / f"{timestamp}_{safe_name}.json"

        if self.persist:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_data: dict[str, Any] = {
            "run": {
                "id": timestamp,
                "name": run_name,
                "start_time": datetime.now().isoformat(),
            },
            "stages": [],
            "api_calls": [],
            "errors": [],
        }

        logger.debug(f"Run logger initialized: {self.log_file}")

    def _current_stage(self) -> Optional[dict]:
        if self.log_data["stages"]:
            return self.log_data["stages"][-1]
        return None

    def log_stage_start(self, stage: str, detail: str = "") -> None:
        """Log the start of a pipeline stage."""
        self.log_data["stages"].append({
            "name": stage,
            "detail": detail,
            "start_time": datetime.now().isoformat(),
            "attempts": [],
            "status": "in_progress",
        })
        logger.info(f"Stage '{stage}' started" + (f": {detail}" if detail else ""))

    def log_stage_end(self, stage: str, success: bool = True, summary: str = "") -> None:
        """Log the end of a pipeline stage."""
        current = self._current_stage()
        if current is None or current["name"] != stage:
            return
        current["end_time"] = datetime.now().isoformat()
        current["status"] = "completed" if success else "failed"
        current["summary"] = summary
        if success:
            self.stats.stages_completed += 1

    def log_attempt(
        self,
        stage: str,
        attempt: int,
        passed: bool,
        feedback: str = "",
        score: Optional[float] = None,
    ) -> None:
        """Log one generate/validate attempt."""
        self.stats.attempts += 1
        if passed:
            self.stats.attempts_passed += 1

        entry = {
            "stage": stage,
            "attempt": attempt,
            "passed": passed,
            "feedback": feedback[:500],
            "score": score,
            "timestamp": datetime.now().isoformat(),
        }
        current = self._current_stage()
        if current is not None:
            current["attempts"].append(entry)

    def log_tools(self, count: int) -> None:
        """Record the number of tools that survived discovery."""
        self.stats.tools_discovered = count

    def log_api_call(
        self,
        stage: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        success: bool = True,
        error: Optional[str] = None,
        duration_ms: int = 0,
    ) -> None:
        """Log a model API call."""
        call = APICallLog(
            timestamp=datetime.now().isoformat(),
            stage=stage,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            success=success,
            error=sanitize_error(error) if error else None,
            duration_ms=duration_ms,
        )
        self.stats.api_calls.append(call)
        self.stats.total_input_tokens += input_tokens
        self.stats.total_output_tokens += output_tokens

        self.log_data["api_calls"].append({
            "timestamp": call.timestamp,
            "stage": stage,
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "success": success,
            "error": call.error,
            "duration_ms": duration_ms,
        })

    def log_error(self, error: str, stage: str = "", context: Optional[dict] = None) -> None:
        """Log an error."""
        message = sanitize_error(error)
        self.log_data["errors"].append({
            "timestamp": datetime.now().isoformat(),
            "stage": stage,
            "error": message,
            "context": context or {},
        })
        logger.error(f"Generation error in {stage or 'pipeline'}: {message}")

    def finalize(self, success: bool, output_dir: Optional[Path] = None) -> None:
        """Finalize the log and write it to disk."""
        self.stats.end_time = datetime.now()

        self.log_data["run"]["end_time"] = self.stats.end_time.isoformat()
        self.log_data["run"]["success"] = success
        self.log_data["run"]["output_dir"] = str(output_dir) if output_dir else None
        self.log_data["stats"] = self.stats.to_dict()

        if not self.persist:
            return

        try:
            with open(self.log_file, "w", encoding="utf-8") as f:
                json.dump(self.log_data, f, indent=2)
            logger.info(f"Run log written to: {self.log_file}")
        except OSError as e:
            logger.error(f"Failed to write run log: {e}")

    def summary_lines(self) -> list[str]:
        """Summary of the run as display lines."""
        stats = self.stats
        return [
            f"Run: {self.run_name}",
            f"Duration: {stats.duration_seconds:.1f}s",
            f"Stages completed: {stats.stages_completed}",
            f"Attempts: {stats.attempts_passed}/{stats.attempts} passed validation",
            f"Tools: {stats.tools_discovered}",
            f"Tokens: {format_token_count(stats.total_tokens)} ({stats.total_input_tokens:,} in, "
            f"{stats.total_output_tokens:,} out)",
            f"Estimated cost: ${stats.estimated_cost:.4f}",
            f"API calls: {len(stats.api_calls)} ({stats.failed_calls} failed)",
            f"Log file: {self.log_file if self.persist else '(not persisted)'}",
        ]
