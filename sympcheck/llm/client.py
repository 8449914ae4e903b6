import asyncio
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import time
from threading import Lock
from typing import Any
from uuid import uuid4

from openai import (
    APIConnectionError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    NotFoundError,
    RateLimitError,
)

from sympcheck.config import settings

_client: AsyncOpenAI | None = None
_semaphore: asyncio.Semaphore | None = None
logger = logging.getLogger(__name__)
_log_write_lock = Lock()

TRANSIENT_LLM_ERRORS = (
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
)


class GatewayError(RuntimeError):
    """The text-generation backend failed or returned nothing usable."""


class RateLimitExceeded(GatewayError):
    """The backend answered HTTP 429. Never retried here; callers pick the backoff."""


def get_semaphore() -> asyncio.Semaphore:
    """Lazy-init semaphore for concurrent LLM call control."""
    global _semaphore
    if _semaphore is None:
        _semaphore = asyncio.Semaphore(settings.llm_max_concurrent_calls)
    return _semaphore


def _llm_log_path() -> Path:
    log_path = Path(settings.llm_log_path)
    if log_path.is_absolute():
        return log_path
    project_root = Path(__file__).resolve().parents[2]
    return project_root / log_path


def _append_llm_log(record: dict) -> None:
    if not settings.llm_log_enabled:
        return

    path = _llm_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False, default=str)
        with _log_write_lock:
            with path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
    except OSError:
        logger.exception("Failed to write LLM request log.")


def get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            timeout=settings.llm_request_timeout_seconds,
            max_retries=0,
        )
    return _client


def _read_json_body(raw_response: Any) -> dict[str, Any] | None:
    try:
        body = raw_response.http_response.json()
    except (ValueError, AttributeError):
        return None
    return body if isinstance(body, dict) else None


def _is_model_loading_event(body: dict[str, Any] | None) -> bool:
    if body is None:
        return False
    if body.get("object") == "model.load":
        return True
    status = body.get("status")
    return isinstance(status, str) and status.lower() in {"loading", "spinning_up"}


def _resolve_retry_after_seconds(body: dict[str, Any] | None, headers: Any) -> float:
    candidates: list[Any] = []
    if body is not None:
        candidates.append(body.get("retry_after_seconds"))
    if headers is not None:
        candidates.append(headers.get("retry-after"))

    for candidate in candidates:
        if candidate is None or isinstance(candidate, bool):
            continue
        try:
            parsed = float(candidate)
        except (TypeError, ValueError):
            continue
        if parsed > 0:
            return parsed

    return max(0.1, settings.llm_retry_backoff_seconds)


def _extract_content(response: Any) -> str:
    """Pull ``choices[0].message.content`` out of a chat-completion envelope."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return (getattr(message, "content", None) or "") if message is not None else ""


class _CallLog:
    """Fixed fields shared by every JSONL record written for one call."""

    def __init__(self, call_type: str, messages: list[dict], max_tokens: int, temperature: float, max_attempts: int) -> None:
        self.base = {
            "call_started_at_utc": datetime.now(timezone.utc).isoformat(),
            "call_id": str(uuid4()),
            "call_type": call_type,
            "max_attempts": max_attempts,
            "base_url": settings.llm_base_url,
            "model": settings.llm_model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }

    def write(
        self,
        *,
        attempt: int,
        started: float,
        output: Any,
        error_type: str | None = None,
        error_message: str | None = None,
    ) -> None:
        _append_llm_log(
            {
                "ts_utc": datetime.now(timezone.utc).isoformat(),
                **self.base,
                "attempt": attempt + 1,
                "output": output,
                "latency_ms": int((time.perf_counter() - started) * 1000),
                "success": error_type is None,
                "error_type": error_type,
                "error_message": error_message,
            }
        )


async def chat_completion(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int | None = None,
    temperature: float | None = None,
    call_type: str = "unspecified",
) -> str:
    """Send one chat completion request and return the message content.

    Connection errors, timeouts and 5xx responses are retried with exponential
    backoff. HTTP 429 raises ``RateLimitExceeded`` straight away; any other
    non-success status raises ``GatewayError``.
    """
    client = get_client()
    retries = max(0, settings.llm_max_retries)
    last_error: Exception | None = None
    resolved_max_tokens = max_tokens or settings.llm_max_tokens
    resolved_temperature = temperature if temperature is not None else settings.llm_temperature
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]
    call_log = _CallLog(call_type, messages, resolved_max_tokens, resolved_temperature, retries + 1)

    async with get_semaphore():
        for attempt in range(retries + 1):
            request_started = time.perf_counter()
            try:
                raw_response = await client.chat.completions.with_raw_response.create(
                    model=settings.llm_model,
                    messages=messages,
                    max_tokens=resolved_max_tokens,
                    temperature=resolved_temperature,
                )
                if raw_response.status_code == 202:
                    response_body = _read_json_body(raw_response)
                    if not _is_model_loading_event(response_body):
                        call_log.write(
                            attempt=attempt,
                            started=request_started,
                            output=response_body,
                            error_type="Unexpected202",
                            error_message="Received HTTP 202 without model loading metadata.",
                        )
                        last_error = GatewayError(
                            "LLM endpoint returned HTTP 202 but no model-loading payload was present."
                        )
                        if attempt >= retries:
                            break
                        await asyncio.sleep(settings.llm_retry_backoff_seconds)
                        continue

                    call_log.write(
                        attempt=attempt,
                        started=request_started,
                        output=response_body,
                        error_type="ModelLoading",
                        error_message="Model loading in progress.",
                    )
                    if attempt >= retries:
                        last_error = GatewayError(
                            "LLM endpoint reported model loading state for all retries. "
                            "Ensure the requested model is available and try again."
                        )
                        break

                    retry_after_seconds = _resolve_retry_after_seconds(response_body, raw_response.headers)
                    logger.warning(
                        "LLM model is loading; retry %s/%s in %.2fs",
                        attempt + 1,
                        retries + 1,
                        retry_after_seconds,
                    )
                    await asyncio.sleep(retry_after_seconds)
                    continue

                output = _extract_content(raw_response.parse())
                call_log.write(attempt=attempt, started=request_started, output=output)
                return output
            except RateLimitError as exc:
                call_log.write(
                    attempt=attempt,
                    started=request_started,
                    output=None,
                    error_type=exc.__class__.__name__,
                    error_message=str(exc),
                )
                logger.warning("LLM %s call rate limited (HTTP 429) on attempt %s", call_type, attempt + 1)
                raise RateLimitExceeded("Rate limit exceeded") from exc
            except NotFoundError as exc:
                call_log.write(
                    attempt=attempt,
                    started=request_started,
                    output=None,
                    error_type=exc.__class__.__name__,
                    error_message=str(exc),
                )
                endpoint = f"{settings.llm_base_url.rstrip('/')}/chat/completions"
                raise GatewayError(
                    f"LLM endpoint not found (404) at {endpoint}. "
                    "This usually means SYMPCHECK_LLM_BASE_URL points to the wrong service "
                    "or the model name is not served there."
                ) from exc
            except (APIResponseValidationError, *TRANSIENT_LLM_ERRORS) as exc:
                call_log.write(
                    attempt=attempt,
                    started=request_started,
                    output=None,
                    error_type=exc.__class__.__name__,
                    error_message=str(exc),
                )
                last_error = exc
                if attempt >= retries:
                    break
                backoff = settings.llm_retry_backoff_seconds * (2**attempt)
                logger.warning(
                    "LLM request failed (%s). retry %s/%s in %.2fs",
                    exc.__class__.__name__,
                    attempt + 1,
                    retries + 1,
                    backoff,
                )
                await asyncio.sleep(backoff)
            except APIStatusError as exc:
                call_log.write(
                    attempt=attempt,
                    started=request_started,
                    output=None,
                    error_type=exc.__class__.__name__,
                    error_message=str(exc),
                )
                logger.error("LLM %s call failed with HTTP %s: %s", call_type, exc.status_code, exc.message)
                raise GatewayError(f"LLM API failed with HTTP {exc.status_code}: {exc.message}") from exc

    assert last_error is not None
    if isinstance(last_error, GatewayError):
        raise last_error
    raise GatewayError(f"LLM request failed after {retries + 1} attempts: {last_error}") from last_error
