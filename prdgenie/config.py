from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_MODEL_NAME = "gemini-2.5-flash"

# Checked in order; the first non-empty value wins.
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL_NAME

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


def _get_api_key() -> Optional[str]:
    for name in API_KEY_ENV_VARS:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def load_settings(dotenv: bool = True) -> Settings:
    """Read settings from the environment, loading ``.env`` first when asked.

    Values already present in the environment are not overridden by ``.env``.
    """
    if dotenv:
        load_dotenv()
    model_name = (os.getenv("GEMINI_MODEL") or "").strip() or DEFAULT_MODEL_NAME
    return Settings(api_key=_get_api_key(), model_name=model_name)
