"""Bounded retry with a corrective re-prompt, shared by the LLM roles."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx

from .cancel import CancelToken, check
from .json_tools import JSONExtractError, parse_json_response
from .llm_client import ChatFn, LLMConfigError, LLMError, LLMSettings
from .model import LogCategory, LogEntryFn, emit

T = TypeVar("T")

MAX_RETRIES = 2

# Failures that count as a spent attempt. Config errors and cancellation propagate.
RETRYABLE_ERRORS = (LLMError, httpx.HTTPError, JSONExtractError, json.JSONDecodeError)


@dataclass
class RetryState:
    attempt: int = 0
    max_attempts: int = MAX_RETRIES + 1
    last_error: str = ""

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class CorrectiveRetry(Generic[T]):
    """Ask, validate, and re-ask with an escalating instruction until attempts run out.

    The first attempt sends prompt as-is; later attempts append the
    correction text. run() returns the validated value or None once the
    attempts are exhausted so the caller can take its fallback path.
    """

    def __init__(
        self,
        label: str,
        prompt: str,
        correction: str,
        *,
        category: LogCategory,
        max_retries: int = MAX_RETRIES,
    ):
        self.label = label
        self.prompt = prompt
        self.correction = correction.strip()
        self.category = category
        self.state = RetryState(max_attempts=max_retries + 1)

    def next_prompt(self) -> str:
        if self.state.attempt == 0:
            return self.prompt
        return f"{self.prompt}\n\n{self.correction}"

    def record_failure(self, reason: str, log: Optional[LogEntryFn]) -> None:
        self.state.attempt += 1
        self.state.last_error = reason
        emit(
            log, LogCategory.WARNING,
            f"{self.label}: attempt {self.state.attempt}/{self.state.max_attempts} failed",
            reason,
        )

    async def run(
        self,
        chat: ChatFn,
        system: str,
        settings: LLMSettings,
        validate: Callable[[Any], Optional[T]],
        *,
        prefer: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
        log: Optional[LogEntryFn] = None,
        llm_log: Optional[Callable[[str], None]] = None,
    ) -> Optional[T]:
        while not self.state.exhausted:
            check(cancel)
            try:
                raw = await chat(
                    [{"role": "user", "content": self.next_prompt()}],
                    system,
                    settings,
                    cancel=cancel,
                    log=llm_log,
                    label=f"{self.label}#{self.state.attempt + 1}",
                )
                check(cancel)
                parsed = parse_json_response(raw, prefer)
            except LLMConfigError:
                raise
            except RETRYABLE_ERRORS as e:
                self.record_failure(f"{type(e).__name__}: {e}", log)
                continue
            value = validate(parsed)
            if value is not None:
                return value
            self.record_failure("response failed validation", log)
        emit(log, self.category, f"{self.label}: retries exhausted", self.state.last_error)
        return None
