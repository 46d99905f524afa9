from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Type

import requests

from figma2mjml.config import ProviderCredentials, Settings
from figma2mjml.models import LayoutDescription, ProviderResponse
from figma2mjml.prompts import SYSTEM_PROMPT, build_layout_prompt

log = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```mjml[^\n]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_ROOT_RE = re.compile(r"<mjml[\s>].*</mjml>", re.DOTALL | re.IGNORECASE)


class ProviderError(Exception):
    """Any adapter-level failure; always recovered by the orchestrator."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code


class MissingCredentialsError(ProviderError):
    """Raised before any network call when a provider has no API key."""


def extract_mjml_from_response(text: str) -> str:
    """Pull the MJML document out of a model reply.

    Tries a ```mjml fenced block, then a raw <mjml>...</mjml> span, and
    finally falls back to the whole reply.
    """
    if not text:
        return ""
    m = _FENCE_RE.search(text)
    if m and m.group(1).strip():
        return m.group(1).strip()
    m = _ROOT_RE.search(text)
    if m:
        return m.group(0).strip()
    log.warning("No MJML block or <mjml> root found in provider reply; using the whole response")
    return text.strip()


def _http_detail(resp: Any) -> str:
    try:
        data = resp.json()
    except Exception:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if data.get("message"):
            return str(data["message"])
    try:
        return (resp.text or "")[:400] or str(resp.status_code)
    except Exception:
        return str(resp.status_code)


class ProviderAdapter:
    """One external generation backend behind the uniform generate() contract.

    Subclasses describe the endpoint and the request/response shapes; the
    single HTTP call, error mapping and markup extraction live here.
    """

    name = ""
    display_name = ""
    endpoint = ""
    default_model = ""
    free = False
    setup = ""

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        timeout: float = 60.0,
        max_tokens: int = 2000,
        temperature: float = 0.3,
    ) -> None:
        self.api_key = (api_key or "").strip() or None
        self.model = model or self.default_model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    @property
    def configured(self) -> bool:
        return self.api_key is not None

    def build_request(self, prompt: str) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_text(self, data: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def extract_usage(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        usage = data.get("usage")
        return usage if isinstance(usage, dict) else None

    def generate(self, description: LayoutDescription) -> ProviderResponse:
        if not self.configured:
            raise MissingCredentialsError(self.name, f"{self.display_name} API key not configured")

        prompt = build_layout_prompt(description)
        request_kwargs = self.build_request(prompt)
        try:
            resp = requests.post(self.endpoint, timeout=self.timeout, **request_kwargs)
        except Exception as e:
            # the exception text can carry the request URL; report only its type
            raise ProviderError(self.name, f"{self.display_name} request error: {type(e).__name__}") from e

        if not 200 <= resp.status_code < 300:
            raise ProviderError(
                self.name,
                f"{self.display_name} API error: {resp.status_code} - {_http_detail(resp)}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except Exception as e:
            raise ProviderError(self.name, f"{self.display_name}: non-JSON HTTP body") from e
        if not isinstance(data, dict):
            raise ProviderError(self.name, f"{self.display_name}: unexpected response shape")

        text = self.extract_text(data)
        if not text or not isinstance(text, str) or not text.strip():
            raise ProviderError(self.name, f"{self.display_name}: empty response text")

        return ProviderResponse(
            success=True,
            raw_text=extract_mjml_from_response(text),
            usage=self.extract_usage(data),
            model=self.model,
        )


class _ChatCompletionsAdapter(ProviderAdapter):
    """OpenAI-compatible chat completions."""

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "headers": {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            "json": {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
            },
        }

    def extract_text(self, data: Dict[str, Any]) -> Optional[str]:
        try:
            return data.get("choices", [{}])[0].get("message", {}).get("content")
        except (AttributeError, IndexError, TypeError):
            return None


class OpenAIAdapter(_ChatCompletionsAdapter):
    name = "openai"
    display_name = "OpenAI"
    endpoint = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-3.5-turbo"
    free = False
    setup = "Requires OpenAI API key"


class GroqAdapter(_ChatCompletionsAdapter):
    name = "groq"
    display_name = "Groq"
    endpoint = "https://api.groq.com/openai/v1/chat/completions"
    default_model = "llama3-8b-8192"
    free = True
    setup = "Free tier: fast inference (console.groq.com)"


class CohereAdapter(ProviderAdapter):
    name = "cohere"
    display_name = "Cohere"
    endpoint = "https://api.cohere.com/v1/chat"
    default_model = "command-r-plus"
    free = True
    setup = "Free tier: 1M tokens/month (cohere.com)"

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "headers": {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            "json": {
                "model": self.model,
                "message": prompt,
                "preamble": SYSTEM_PROMPT,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "chat_history": [],
                "prompt_truncation": "AUTO",
            },
        }

    def extract_text(self, data: Dict[str, Any]) -> Optional[str]:
        return data.get("text")

    def extract_usage(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        tokens = (data.get("meta") or {}).get("tokens") or {}
        return {
            "input_tokens": tokens.get("input_tokens") or 0,
            "output_tokens": tokens.get("output_tokens") or 0,
        }


def _extract_gemini_text(payload: Dict[str, Any]) -> Optional[str]:
    for cand in payload.get("candidates") or []:
        content = cand.get("content") or {}
        for part in content.get("parts") or []:
            txt = part.get("text")
            if isinstance(txt, str) and txt.strip():
                return txt
    return None


class GeminiAdapter(ProviderAdapter):
    name = "gemini"
    display_name = "Gemini"
    default_model = "gemini-1.5-flash-latest"
    free = True
    setup = "Free tier via Google AI Studio"

    @property
    def endpoint(self) -> str:  # type: ignore[override]
        return f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "headers": {
                "x-goog-api-key": self.api_key,
                "Content-Type": "application/json",
            },
            "json": {
                "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                },
            },
        }

    def extract_text(self, data: Dict[str, Any]) -> Optional[str]:
        return _extract_gemini_text(data)

    def extract_usage(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        usage = data.get("usageMetadata")
        return usage if isinstance(usage, dict) else None


PROVIDERS: Dict[str, Type[ProviderAdapter]] = {
    cls.name: cls for cls in (OpenAIAdapter, GroqAdapter, CohereAdapter, GeminiAdapter)
}


def build_adapters(settings: Settings) -> Dict[str, ProviderAdapter]:
    """One adapter per registered backend, credentials injected from settings."""
    creds = settings.credentials()
    return {
        name: cls(
            api_key=creds.get(name),
            model=settings.provider_models.get(name),
            timeout=settings.llm_timeout_secs,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
        )
        for name, cls in PROVIDERS.items()
    }


def available_providers(
    credentials: ProviderCredentials, models: Optional[Dict[str, str]] = None
) -> List[Dict[str, Any]]:
    models = models or {}
    return [
        {
            "key": name,
            "name": cls.display_name,
            "model": models.get(name) or cls.default_model,
            "free": cls.free,
            "setup": cls.setup,
            "available": bool(credentials.get(name)),
        }
        for name, cls in PROVIDERS.items()
    ]
