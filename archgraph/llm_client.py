"""LLM chat transport for Ollama, OpenAI-compatible and Anthropic endpoints."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .cancel import CancelToken
from .config import get_llm_config

ANTHROPIC_VERSION = "2023-06-01"
KNOWN_PROVIDERS = ("ollama", "openai", "anthropic")


class LLMError(RuntimeError):
    """Base class for transport failures."""


class LLMConfigError(LLMError):
    """No usable credential or provider; the caller must fix settings."""


class LLMRateLimitError(LLMError):
    def __init__(self, provider: str):
        super().__init__(f"{provider} quota or rate limit exceeded. Wait a moment then try again.")
        self.provider = provider


class LLMResponseError(LLMError):
    """The provider answered with an empty or malformed payload."""


@dataclass
class ProviderConfig:
    provider: str
    model: str
    base_url: str
    api_key: str = ""
    num_ctx: Optional[int] = None


@dataclass
class LLMSettings:
    active_provider: str
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    temperature: float = 0.3
    timeout_s: float = 600
    max_tokens: int = 4096

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "LLMSettings":
        """Build settings from the llm config section, reading keys from the environment."""
        cfg = cfg if cfg is not None else get_llm_config()
        providers: Dict[str, ProviderConfig] = {}
        for name, raw in (cfg.get("providers") or {}).items():
            if not isinstance(raw, dict):
                raise RuntimeError(f'Config llm.providers.{name} must be a mapping')
            key_env = str(raw.get("api_key_env") or "")
            providers[name] = ProviderConfig(
                provider=name,
                model=str(raw.get("model") or ""),
                base_url=str(raw.get("base_url") or "").rstrip("/"),
                api_key=os.environ.get(key_env, "").strip() if key_env else "",
                num_ctx=int(raw["num_ctx"]) if raw.get("num_ctx") else None,
            )
        return cls(
            active_provider=str(cfg.get("active_provider") or "ollama"),
            providers=providers,
            temperature=float(cfg.get("temperature", 0.3)),
            timeout_s=float(cfg.get("timeout_s", 600)),
            max_tokens=int(cfg.get("max_tokens", 4096)),
        )

    @property
    def active(self) -> Optional[ProviderConfig]:
        return self.providers.get(self.active_provider)

    def has_credential(self) -> bool:
        """True when the active provider can be called without further setup."""
        cfg = self.active
        if cfg is None or not cfg.model:
            return False
        if cfg.provider == "ollama":
            return bool(cfg.base_url)
        return bool(cfg.api_key)

    def with_overrides(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> "LLMSettings":
        """Return a copy with CLI overrides applied to the active provider."""
        active_name = provider or self.active_provider
        providers = dict(self.providers)
        current = providers.get(active_name) or ProviderConfig(provider=active_name, model="", base_url="")
        current = replace(
            current,
            model=model or current.model,
            base_url=(base_url or current.base_url).rstrip("/"),
        )
        providers[active_name] = current
        return replace(
            self,
            active_provider=active_name,
            providers=providers,
            timeout_s=timeout_s if timeout_s is not None else self.timeout_s,
        )


Message = Dict[str, str]
ChatFn = Callable[..., Awaitable[str]]


def require_credential(settings: LLMSettings) -> ProviderConfig:
    """Return the active provider config or raise LLMConfigError."""
    if settings.active_provider not in KNOWN_PROVIDERS:
        raise LLMConfigError(f"Unknown provider: {settings.active_provider}")
    cfg = settings.active
    if cfg is None or not settings.has_credential():
        raise LLMConfigError(
            f"No credential configured for {settings.active_provider}. "
            "Set the API key environment variable or choose another provider."
        )
    return cfg


def _check_status(provider: str, response: httpx.Response) -> None:
    if response.status_code == 429:
        raise LLMRateLimitError(provider)
    if response.status_code in (401, 403):
        raise LLMConfigError(f"{provider} API key is invalid or lacks access")
    response.raise_for_status()


async def _ollama(client: httpx.AsyncClient, cfg: ProviderConfig, settings: LLMSettings,
                  messages: List[Message], system: str) -> str:
    options: Dict[str, Any] = {
        "temperature": settings.temperature,
        "num_predict": settings.max_tokens,
    }
    if cfg.num_ctx:
        options["num_ctx"] = cfg.num_ctx
    payload = {
        "model": cfg.model,
        "messages": [{"role": "system", "content": system}, *messages],
        "options": options,
        "stream": False,
    }
    r = await client.post(f"{cfg.base_url}/api/chat", json=payload)
    _check_status("Ollama", r)
    try:
        return r.json()["message"]["content"]
    except (KeyError, TypeError, ValueError) as e:
        raise LLMResponseError(f"Unexpected Ollama payload: {e}") from e


async def _openai(client: httpx.AsyncClient, cfg: ProviderConfig, settings: LLMSettings,
                  messages: List[Message], system: str) -> str:
    payload = {
        "model": cfg.model,
        "messages": [{"role": "system", "content": system}, *messages],
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
    }
    headers = {"Authorization": f"Bearer {cfg.api_key}"}
    r = await client.post(f"{cfg.base_url}/chat/completions", json=payload, headers=headers)
    _check_status("OpenAI", r)
    try:
        return r.json()["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise LLMResponseError(f"Unexpected OpenAI payload: {e}") from e


async def _anthropic(client: httpx.AsyncClient, cfg: ProviderConfig, settings: LLMSettings,
                     messages: List[Message], system: str) -> str:
    payload = {
        "model": cfg.model,
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
        "system": system,
        "messages": messages,
    }
    headers = {"x-api-key": cfg.api_key, "anthropic-version": ANTHROPIC_VERSION}
    r = await client.post(f"{cfg.base_url}/v1/messages", json=payload, headers=headers)
    _check_status("Anthropic", r)
    try:
        blocks = r.json()["content"]
    except (KeyError, TypeError, ValueError) as e:
        raise LLMResponseError(f"Unexpected Anthropic payload: {e}") from e
    return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")


_DISPATCH = {
    "ollama": _ollama,
    "openai": _openai,
    "anthropic": _anthropic,
}


async def llm_chat(
    messages: List[Message],
    system: str,
    settings: LLMSettings,
    *,
    cancel: Optional[CancelToken] = None,
    log: Optional[Callable[[str], None]] = None,
    label: str = "request",
) -> str:
    """Send one chat request to the active provider and return the reply text."""
    cfg = require_credential(settings)
    if log is not None:
        prompt_chars = len(system) + sum(len(m.get("content", "")) for m in messages)
        log(
            f"[LLM] {label} model={cfg.model} prompt_chars={prompt_chars} "
            f"turns={len(messages)} provider={cfg.provider}"
        )

    async def _send() -> str:
        async with httpx.AsyncClient(timeout=settings.timeout_s) as client:
            return await _DISPATCH[cfg.provider](client, cfg, settings, messages, system)

    if cancel is not None:
        text = await cancel.guard(_send())
    else:
        text = await _send()
    if not text or not text.strip():
        raise LLMResponseError(f"{cfg.provider} returned an empty response")
    return text
