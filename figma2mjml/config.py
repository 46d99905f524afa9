from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

# provider name -> environment variable holding its credential
PROVIDER_KEY_ENV: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
}
PROVIDER_MODEL_ENV: Dict[str, str] = {
    "openai": "OPENAI_MODEL",
    "groq": "GROQ_MODEL",
    "cohere": "COHERE_MODEL",
    "gemini": "GEMINI_MODEL",
}
DEFAULT_PROVIDER_ORDER = ["openai", "groq", "cohere"]

ProviderCredentials = Dict[str, Optional[str]]


def load_dotenv_file(path: str = ".env") -> None:
    """Load KEY=VALUE lines from a local .env without overwriting the real environment."""
    # tests stay offline and deterministic
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    env_path = Path(path)
    if not env_path.exists():
        return
    try:
        lines = env_path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        log.warning("Could not read %s: %r", env_path, exc)
        return
    for line in lines:
        s = line.strip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        key, val = s.split("=", 1)
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
            val = val[1:-1]
        if key and key not in os.environ:
            os.environ[key] = val


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name, "").strip()
    return raw or None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "")
    items = [p.strip() for p in raw.split(",") if p.strip()]
    return items or list(default)


class Settings(BaseModel):
    provider_keys: ProviderCredentials = Field(default_factory=dict)
    provider_models: Dict[str, str] = Field(default_factory=dict)
    provider_order: List[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))
    llm_timeout_secs: float = 60.0
    llm_max_tokens: int = 2000
    llm_temperature: float = 0.3
    figma_token: Optional[str] = None
    figma_timeout_secs: float = 30.0
    max_upload_bytes: int = 10 * 1024 * 1024
    allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        models: Dict[str, str] = {}
        for name, var in PROVIDER_MODEL_ENV.items():
            model = _env_str(var)
            if model:
                models[name] = model
        return cls(
            provider_keys={name: _env_str(var) for name, var in PROVIDER_KEY_ENV.items()},
            provider_models=models,
            provider_order=[p.lower() for p in _env_list("AI_PROVIDERS", DEFAULT_PROVIDER_ORDER)],
            llm_timeout_secs=_env_float("LLM_TIMEOUT_SECS", 60.0),
            llm_max_tokens=_env_int("LLM_MAX_TOKENS", 2000),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.3),
            figma_token=_env_str("FIGMA_TOKEN"),
            figma_timeout_secs=_env_float("FIGMA_TIMEOUT_SECS", 30.0),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            allow_origins=_env_list("ALLOW_ORIGINS", ["*"]),
            log_level=(os.getenv("LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    def credentials(self) -> ProviderCredentials:
        """Credential map handed to the orchestrator; None marks an unconfigured provider."""
        return {name: (self.provider_keys.get(name) or None) for name in PROVIDER_KEY_ENV}
