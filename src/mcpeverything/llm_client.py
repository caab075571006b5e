"""Text-generation model clients.

All pipeline stages talk to the model through ``LLMClient.complete``. The
real client calls the Anthropic Messages API over httpx with retry on
transient errors; the mock client returns scripted or stage-aware canned
responses so the whole pipeline can run offline.
"""

from __future__ import annotations

import json
import logging
import random
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import httpx

from .errors import LLMClientError, LLMRateLimitError
from .json_utils import sanitize_error
from .tokens import estimate_prompt_tokens, estimate_tokens

if TYPE_CHECKING:
    from .config import Config
    from .run_logger import RunLogger

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class LLMCall:
    """A recorded call to the model."""

    stage: str
    prompt: str
    system: Optional[str] = None
    max_tokens: Optional[int] = None


class LLMClient(ABC):
    """Abstract base class for text-generation clients."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        stage: str = "llm",
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a single-turn prompt and return the model's text.

        Args:
            prompt: The user prompt.
            system: Optional system prompt.
            stage: Name of the calling pipeline stage, attached to errors and logs.
            max_tokens: Override for the response token limit.

        Returns:
            The concatenated text blocks of the response.

        Raises:
            LLMClientError: If the call fails.
        """


class AnthropicClient(LLMClient):
    """Client for the Anthropic Messages API."""

    # Status codes eligible for retry (transient errors)
    RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-20241022",
        max_tokens: int = 1000,
        temperature: float = 0.2,
        timeout: int = 30,
        retry_max_attempts: int = 3,
        retry_backoff_base: float = 2.0,
        retry_backoff_max: float = 60.0,
        run_logger: Optional[RunLogger] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            model: Model to use for all calls.
            max_tokens: Default maximum tokens in a response.
            temperature: Sampling temperature.
            timeout: Request timeout in seconds.
            retry_max_attempts: Maximum number of attempts for transient errors.
            retry_backoff_base: Base seconds for exponential backoff.
            retry_backoff_max: Maximum backoff time in seconds.
            run_logger: Optional run logger that records each call.
            http_client: Optional preconfigured httpx client.
        """
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.retry_max_attempts = retry_max_attempts
        self.retry_backoff_base = retry_backoff_base
        self.retry_backoff_max = retry_backoff_max
        self.run_logger = run_logger
        self.client = http_client or httpx.Client(timeout=timeout)

    def _should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error is transient and should be retried.

        Args:
            error: The exception that occurred.
            attempt: Current attempt number (1-indexed).

        Returns:
            True if the error is transient and retry is allowed.
        """
        if attempt >= self.retry_max_attempts:
            return False

        if isinstance(error, httpx.TimeoutException):
            return True

        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code in self.RETRYABLE_STATUS_CODES

        if isinstance(error, (httpx.ConnectError, httpx.RemoteProtocolError)):
            return True

        return False

    def _get_backoff_time(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Calculate exponential backoff time with full jitter.

        backoff = random(0, min(cap, base * 2^(attempt-1)))

        Args:
            attempt: Current attempt number (1-indexed).
            retry_after: Optional Retry-After header value from server.

        Returns:
            Backoff time in seconds.
        """
        if retry_after is not None:
            return float(retry_after)

        exp_backoff = self.retry_backoff_base * (2 ** (attempt - 1))
        capped_backoff = min(exp_backoff, self.retry_backoff_max)
        return random.uniform(0, capped_backoff)

    @staticmethod
    def _retry_after(error: Exception) -> Optional[float]:
        if not isinstance(error, httpx.HTTPStatusError):
            return None
        value = error.response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _post(self, payload: dict) -> dict:
        response = self.client.post(
            ANTHROPIC_API_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json=payload,
        )
        response.raise_for_status()
        return response.json()

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        stage: str = "llm",
        max_tokens: Optional[int] = None,
    ) -> str:
        """Call the Messages API with retry logic for transient failures."""
        payload: dict = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system

        started = time.monotonic()
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_max_attempts + 1):
            try:
                data = self._post(payload)
                text = self._extract_text(data, stage)
                self._record(stage, prompt, system, text, data, started)
                return text

            except LLMClientError as e:
                self._record_failure(stage, prompt, system, str(e), started)
                raise

            except ValueError as e:
                # 200 responses with a non-JSON body, e.g. a proxy error page
                error = LLMClientError(
                    sanitize_error(f"Unexpected response format from Anthropic: {e}"), stage
                )
                self._record_failure(stage, prompt, system, str(error), started)
                raise error from e

            except (httpx.HTTPStatusError, httpx.TimeoutException, httpx.ConnectError,
                    httpx.RemoteProtocolError) as e:
                last_error = e

                if self._should_retry(e, attempt):
                    backoff = self._get_backoff_time(attempt, self._retry_after(e))
                    status_info = ""
                    if isinstance(e, httpx.HTTPStatusError):
                        status_info = f" (status {e.response.status_code})"
                    logger.warning(
                        f"[{stage}] Transient error{status_info} on attempt "
                        f"{attempt}/{self.retry_max_attempts}: {type(e).__name__}. "
                        f"Retrying in {backoff:.2f}s..."
                    )
                    time.sleep(backoff)
                    continue

                break

            except httpx.HTTPError as e:
                last_error = e
                break

        error = self._final_error(last_error, stage)
        self._record_failure(stage, prompt, system, str(error), started)
        raise error

    def _extract_text(self, data: dict, stage: str) -> str:
        try:
            blocks = data["content"]
            text = "".join(
                block.get("text", "") for block in blocks if block.get("type") == "text"
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise LLMClientError(
                f"Unexpected response format from Anthropic: {exc}", stage
            ) from exc
        if not text:
            raise LLMClientError("Unexpected response format from Anthropic: no text block", stage)
        return text

    def _final_error(self, error: Optional[Exception], stage: str) -> LLMClientError:
        attempts = self.retry_max_attempts
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            body = ""
            try:
                body = sanitize_error(error.response.text[:500])
            except (httpx.ResponseNotRead, UnicodeDecodeError):
                pass
            if status == 429:
                return LLMRateLimitError(
                    f"Anthropic API rate limit exceeded after {attempts} attempts", stage
                )
            return LLMClientError(f"Anthropic API error {status}: {body}", stage)
        if isinstance(error, httpx.TimeoutException):
            return LLMClientError(
                f"Request to Anthropic API timed out after {attempts} attempts "
                f"(timeout: {self.timeout}s)",
                stage,
            )
        return LLMClientError(
            sanitize_error(f"Error calling Anthropic API: {error}"), stage
        )

    def _record(
        self,
        stage: str,
        prompt: str,
        system: Optional[str],
        text: str,
        data: dict,
        started: float,
    ) -> None:
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens") or estimate_prompt_tokens(prompt, system)
        output_tokens = usage.get("output_tokens") or estimate_tokens(text)
        logger.debug(f"[{stage}] Anthropic usage: {input_tokens} input, {output_tokens} output tokens")
        if self.run_logger is not None:
            self.run_logger.log_api_call(
                stage=stage,
                model=self.model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

    def _record_failure(
        self,
        stage: str,
        prompt: str,
        system: Optional[str],
        error: str,
        started: float,
    ) -> None:
        logger.error(f"Anthropic API call failed: {error}")
        if self.run_logger is not None:
            self.run_logger.log_api_call(
                stage=stage,
                model=self.model,
                input_tokens=estimate_prompt_tokens(prompt, system),
                success=False,
                error=error,
                duration_ms=int((time.monotonic() - started) * 1000),
            )


class MockLLMClient(LLMClient):
    """Mock client for running the pipeline without API calls.

    Responses are chosen in this order: the next queued response for the
    stage, the first ``responses`` entry whose key appears in the prompt,
    then a canned response that fits the stage.
    """

    def __init__(
        self,
        responses: Optional[dict[str, str]] = None,
        stage_responses: Optional[dict[str, list[str]]] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.responses = responses or {}
        self.stage_responses = {k: list(v) for k, v in (stage_responses or {}).items()}
        self.run_logger = run_logger
        self.calls: list[LLMCall] = []
        self.fail_stages: set[str] = set()
        self.fail_error = "Mock failure"

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_for(self, stage: str) -> list[LLMCall]:
        """Calls whose stage equals or starts with the given stage."""
        return [c for c in self.calls if c.stage == stage or c.stage.startswith(stage + ".")]

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        stage: str = "llm",
        max_tokens: Optional[int] = None,
    ) -> str:
        self.calls.append(LLMCall(stage=stage, prompt=prompt, system=system, max_tokens=max_tokens))

        if stage in self.fail_stages:
            raise LLMClientError(self.fail_error, stage)

        text = self._pick(stage, prompt)
        if self.run_logger is not None:
            self.run_logger.log_api_call(
                stage=stage,
                model="mock",
                input_tokens=estimate_prompt_tokens(prompt, system),
                output_tokens=estimate_tokens(text),
            )
        return text

    def _pick(self, stage: str, prompt: str) -> str:
        queue = self.stage_responses.get(stage)
        if queue:
            return queue.pop(0) if len(queue) > 1 else queue[0]

        for key, response in self.responses.items():
            if key in prompt:
                return response

        return _canned_response(stage, prompt)


_TOOL_NAME_RE = re.compile(r'"name":\s*"([a-z_]+)"')


def _canned_response(stage: str, prompt: str) -> str:
    """Produce a plausible response for a stage when nothing is scripted."""
    if stage == "discovery.judge":
        name_match = re.search(r"Tool:\s*(\S+)", prompt)
        return json.dumps({
            "toolName": name_match.group(1) if name_match else "unknown",
            "isValid": True,
            "quality": {
                "usefulness": 0.8,
                "specificity": 0.75,
                "implementability": 0.9,
                "uniqueness": 0.7,
                "overallScore": 0.8,
                "reasoning": "Mock judgment",
            },
            "feedback": "Looks good",
            "suggestedImprovements": [],
        })

    if stage.startswith("discovery"):
        return json.dumps({
            "tools": [
                {
                    "name": "search_repository",
                    "description": "Search repository files for a text pattern",
                    "category": "search",
                    "inputSchema": {
                        "type": "object",
                        "properties": {
                            "pattern": {"type": "string", "description": "Text to search for"},
                        },
                        "required": ["pattern"],
                    },
                    "implementationHints": {
                        "primaryAction": "Search files",
                        "requiredData": ["file tree"],
                        "dependencies": [],
                        "complexity": "simple",
                        "outputFormat": "json",
                        "errorHandling": ["no matches"],
                        "examples": [],
                    },
                }
            ],
            "reasoning": "Mock discovery",
            "confidence": 0.8,
        })

    if stage == "generation.judge":
        return json.dumps({
            "isValid": True,
            "score": 90,
            "feedback": "Mock judge accepted the server",
            "issues": [],
        })

    if stage == "generation.implementation":
        return (
            "try:\n"
            "    payload = json.dumps(args, sort_keys=True)\n"
            "    return [types.TextContent(type=\"text\", text=payload)]\n"
            "except (TypeError, ValueError) as exc:\n"
            "    raise ValueError(f\"Invalid arguments: {exc}\") from exc\n"
        )

    if stage.startswith("generation"):
        names = list(dict.fromkeys(_TOOL_NAME_RE.findall(prompt)))
        server_match = re.search(r'Server\("([a-z0-9-]+)"\)', prompt)
        server_name = server_match.group(1) if server_match else "generated-mcp-server"
        return _mock_server_source(server_name, names)

    return "Mock response"


def _mock_server_source(server_name: str, tool_names: list[str]) -> str:
    functions = []
    tools = []
    branches = []
    for name in tool_names:
        functions.append(
            f"async def {name}_implementation(args: dict[str, Any]) -> list[types.TextContent]:\n"
            f"    payload = json.dumps({{\"tool\": \"{name}\", \"args\": args}}, sort_keys=True)\n"
            f"    return [types.TextContent(type=\"text\", text=payload)]\n"
        )
        tools.append(
            f"        types.Tool(\n"
            f"            name=\"{name}\",\n"
            f"            description=\"{name.replace('_', ' ')}\",\n"
            f"            inputSchema={{\"type\": \"object\", \"properties\": {{}}}},\n"
            f"        ),\n"
        )
        branches.append(
            f"    if name == \"{name}\":\n"
            f"        return await {name}_implementation(arguments)\n"
        )

    return (
        "import asyncio\n"
        "import json\n"
        "from typing import Any\n"
        "\n"
        "import mcp.types as types\n"
        "from mcp.server import Server\n"
        "from mcp.server.stdio import stdio_server\n"
        "\n\n"
        + "\n\n".join(functions)
        + "\n\n"
        f"server = Server(\"{server_name}\")\n"
        "\n\n"
        "@server.list_tools()\n"
        "async def list_tools() -> list[types.Tool]:\n"
        "    return [\n"
        + "".join(tools)
        + "    ]\n"
        "\n\n"
        "@server.call_tool()\n"
        "async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:\n"
        + "".join(branches)
        + "    raise ValueError(f\"Unknown tool: {name}\")\n"
        "\n\n"
        "async def main() -> None:\n"
        "    async with stdio_server() as (read_stream, write_stream):\n"
        "        await server.run(read_stream, write_stream, server.create_initialization_options())\n"
        "\n\n"
        "if __name__ == \"__main__\":\n"
        "    asyncio.run(main())\n"
    )


def create_llm_client(
    config: Config,
    run_logger: Optional[RunLogger] = None,
) -> LLMClient:
    """Factory function to create the appropriate model client.

    Args:
        config: Loaded configuration.
        run_logger: Optional run logger that records each call.

    Returns:
        LLMClient instance.

    Raises:
        LLMClientError: If the API key is missing and not in mock mode.
    """
    if config.mock_mode:
        return MockLLMClient(run_logger=run_logger)

    if not config.anthropic_api_key:
        raise LLMClientError(
            "ANTHROPIC_API_KEY environment variable is required", stage="config"
        )

    model = config.generation.model
    return AnthropicClient(
        api_key=config.anthropic_api_key,
        model=model.model,
        max_tokens=model.max_tokens,
        temperature=model.temperature,
        timeout=model.timeout,
        retry_max_attempts=config.retry_max_attempts,
        retry_backoff_base=config.retry_backoff_base,
        retry_backoff_max=config.retry_backoff_max,
        run_logger=run_logger,
    )
