"""
LLM Helpers Module

Transport and response parsing for every Gateway call. All model traffic goes
through call_llm_with_retry(); prompts are rendered from resonext/prompts/.

Example Usage:
    from resonext.utils.llm_helpers import call_llm_with_retry, parse_json_response

    text = await call_llm_with_retry(
        prompt,
        system_prompt="You are an expert academic writer.",
        allowed_tools=["WebSearch", "WebFetch"],
        max_turns=12,
    )
    payload = parse_json_response(text)
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    after_log,
    before_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from resonext.utils.errors import GatewayError, GatewayResponseError

logger = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert academic assistant. Respond directly to user prompts "
    "with the requested output."
)


def _extract_json_from_markdown(response_text: str) -> str:
    """Extract JSON from LLM response, removing markdown code block markers if present.

    Text before the first "{" or "[" (e.g. "Here is the JSON:") is dropped too.

    Args:
        response_text: Raw text response from LLM

    Returns:
        Clean JSON string with code block markers removed
    """
    json_text = response_text.strip()

    fence = json_text.find("```")
    if fence > 0:
        json_text = json_text[fence:]

    if json_text.startswith("```json"):
        json_text = json_text[7:]
    elif json_text.startswith("```"):
        json_text = json_text[3:]

    closing = json_text.rfind("```")
    if closing != -1:
        json_text = json_text[:closing]

    json_text = json_text.strip()
    if json_text and json_text[0] not in "{[":
        starts = [i for i in (json_text.find("{"), json_text.find("[")) if i != -1]
        if starts:
            json_text = json_text[min(starts):]

    return json_text.strip()


def parse_json_response(
    response_text: str, correlation_id: Optional[str] = None
) -> dict[str, Any]:
    """
    Parse a model response into a JSON object.

    Args:
        response_text: Raw text response from LLM
        correlation_id: Optional correlation ID for logging

    Returns:
        Parsed JSON object

    Raises:
        GatewayResponseError: If the text is not a JSON object
    """
    json_text = _extract_json_from_markdown(response_text)
    try:
        result = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.error(
            "Failed to parse JSON from LLM response",
            error=str(e),
            response=response_text[:200],
            correlation_id=correlation_id,
        )
        raise GatewayResponseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(result, dict):
        logger.error(
            "LLM response is not a JSON object",
            response_type=type(result).__name__,
            correlation_id=correlation_id,
        )
        raise GatewayResponseError(
            f"Expected a JSON object, got {type(result).__name__}"
        )
    return result


async def _query_llm(
    prompt: str,
    system_prompt: str,
    allowed_tools: list[str],
    max_turns: int,
    cwd: Optional[Path],
    model: Optional[str],
) -> str:
    from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient

    options = ClaudeAgentOptions(
        max_turns=max_turns,
        allowed_tools=allowed_tools,
        system_prompt=system_prompt,
        setting_sources=None,  # No .claude/settings or CLAUDE.md context
        cwd=cwd,
        model=model,
    )

    # Only the final assistant turn carries the answer; earlier turns narrate tool use
    turns: list[str] = []
    async with ClaudeSDKClient(options=options) as client:
        await client.query(prompt)
        async for message in client.receive_response():
            if hasattr(message, "content") and isinstance(message.content, list):
                text = "".join(
                    block.text for block in message.content if hasattr(block, "text")
                )
                if text:
                    turns.append(text)

    if not turns:
        raise GatewayError("LLM returned empty response")
    return turns[-1]


async def call_llm_with_retry(
    prompt: str,
    *,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    allowed_tools: Optional[list[str]] = None,
    max_turns: int = 1,
    cwd: Optional[Path] = None,
    model: Optional[str] = None,
    max_attempts: int = 1,
    correlation_id: Optional[str] = None,
) -> str:
    """
    Call the LLM, optionally retrying transport failures with exponential backoff.

    Args:
        prompt: The rendered prompt to send
        system_prompt: System prompt for the call
        allowed_tools: Agent tools the model may use (default: none)
        max_turns: Maximum agent turns (1 for plain text generation)
        cwd: Working directory for file-reading tools
        model: Model override (None uses the SDK default)
        max_attempts: Total attempts for ConnectionError/TimeoutError (1 = no retry)
        correlation_id: Optional correlation ID for logging

    Returns:
        Text of the final assistant turn

    Raises:
        GatewayError: If the call fails or returns nothing
    """
    log = logger.bind(correlation_id=correlation_id) if correlation_id else logger
    log.debug(
        "LLM call initiated",
        prompt_length=len(prompt),
        tools=allowed_tools or [],
        max_turns=max_turns,
    )

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type((ConnectionError, TimeoutError)),
            before=before_log(logger, logging.INFO),
            after=after_log(logger, logging.INFO),
            reraise=True,
        ):
            with attempt:
                response_text = await _query_llm(
                    prompt,
                    system_prompt=system_prompt,
                    allowed_tools=allowed_tools or [],
                    max_turns=max_turns,
                    cwd=cwd,
                    model=model,
                )
    except GatewayError:
        log.error("LLM returned empty response", prompt_length=len(prompt))
        raise
    except Exception as e:
        log.error("LLM call failed", error=str(e), prompt_length=len(prompt))
        raise GatewayError(f"LLM call failed: {e}") from e

    log.debug("LLM call succeeded", response_length=len(response_text))
    return response_text.strip()
