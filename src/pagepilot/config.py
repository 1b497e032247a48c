# src/pagepilot/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Components get explicit constructor arguments; only the composition root reads settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

ENV_PREFIX = "PAGEPILOT"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- AI provider (OpenAI-compatible, OpenRouter by default) ----
    offline: bool
    ai_api_key: Optional[str]
    ai_base_url: str
    ai_models: List[str]
    extra_headers: Dict[str, str]
    ai_timeout_seconds: float

    # ---- Execution ----
    max_execution_seconds: float
    validation_enabled: bool

    # ---- Cache ----
    cache_max_bytes: int
    cache_ttl_seconds: float
    cache_cleanup_seconds: float

    # ---- Prompt injection ----
    prompt_max_variable_length: int
    prompt_max_template_length: int

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="pagepilot") or "pagepilot"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        offline = _env_bool(_k("OFFLINE"), False)
        ai_api_key = _first_env(_k("AI_API_KEY"), "OPENROUTER_API_KEY", default=None)
        ai_base_url = _env(_k("AI_BASE_URL"), "https://openrouter.ai/api/v1")

        http_referer = _env(_k("HTTP_REFERER"), "https://example.com")
        title = _env(_k("APP_TITLE"), app_name)
        extra_headers = {
            "HTTP-Referer": http_referer,
            "X-Title": title,
        }

        ai_models = _env_list(
            _k("AI_MODELS"),
            [
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )
        ai_timeout_seconds = _env_float(_k("AI_TIMEOUT_SECONDS"), 25.0)

        max_execution_seconds = _env_float(_k("MAX_EXECUTION_SECONDS"), 30.0)
        validation_enabled = _env_bool(_k("VALIDATION_ENABLED"), True)

        cache_max_bytes = _env_int(_k("CACHE_MAX_BYTES"), 20 * 1024 * 1024)
        cache_ttl_seconds = _env_float(_k("CACHE_TTL_SECONDS"), 30 * 60.0)
        cache_cleanup_seconds = _env_float(_k("CACHE_CLEANUP_SECONDS"), 5 * 60.0)

        prompt_max_variable_length = _env_int(_k("PROMPT_MAX_VARIABLE_LENGTH"), 2000)
        prompt_max_template_length = _env_int(_k("PROMPT_MAX_TEMPLATE_LENGTH"), 10000)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/pagepilot"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            offline=offline,
            ai_api_key=ai_api_key,
            ai_base_url=ai_base_url,
            ai_models=ai_models,
            extra_headers=extra_headers,
            ai_timeout_seconds=ai_timeout_seconds,
            max_execution_seconds=max_execution_seconds,
            validation_enabled=validation_enabled,
            cache_max_bytes=cache_max_bytes,
            cache_ttl_seconds=cache_ttl_seconds,
            cache_cleanup_seconds=cache_cleanup_seconds,
            prompt_max_variable_length=prompt_max_variable_length,
            prompt_max_template_length=prompt_max_template_length,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
