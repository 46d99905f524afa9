from __future__ import annotations

import os
from typing import Optional, Set

from fastapi import Header, HTTPException


def load_keys() -> Set[str]:
    raw = os.getenv("API_KEYS", "")
    return {k.strip() for k in raw.split(",") if k.strip()}


API_KEYS: Set[str] = load_keys()


def check_api_key(key: Optional[str]) -> bool:
    """True when no keys are configured (dev mode) or `key` is one of them."""
    if not API_KEYS:
        return True
    return bool(key) and key in API_KEYS


def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> Optional[str]:
    if not check_api_key(x_api_key):
        raise HTTPException(status_code=401, detail="invalid or missing API key")
    return x_api_key


def extract_client_key(api_key: Optional[str], host: Optional[str]) -> str:
    """Rate-limit identity: the API key when present, otherwise the client address."""
    if api_key:
        return f"key:{api_key}"
    return f"ip:{host or 'anon'}"
