import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "MOMENTUM_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
PLACEHOLDER_KEYS = {"", "YOUR_GROQ_API_KEY_HERE", "YOUR_OPENAI_API_KEY_HERE"}

BackoffCurve = Literal["linear", "exponential"]


class ProviderConfig(BaseModel):
    name: str
    base_url: str
    model_id: str
    api_key: Optional[str] = None

    model_config = {"protected_namespaces": ()}

    @property
    def enabled(self) -> bool:
        return bool(self.base_url) and (self.api_key or "") not in PLACEHOLDER_KEYS


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay_s: float = 2.0
    # 5xx / 429 responses
    server_backoff: BackoffCurve = "linear"
    # connection resets, timeouts, DNS
    transport_backoff: BackoffCurve = "exponential"


class AppSettings(BaseModel):
    fast_provider: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            name="Groq",
            base_url="https://api.groq.com/openai/v1",
            model_id="llama-3.3-70b-versatile",
        )
    )
    standard_provider: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            name="OpenAI",
            base_url="https://api.openai.com/v1",
            model_id="gpt-4o-mini",
        )
    )
    premium_provider: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            name="OpenAI",
            base_url="https://api.openai.com/v1",
            model_id="gpt-4o",
        )
    )
    search_model: str = "openai/gpt-oss-120b"
    search_tool: str = "browser_search"

    retry: RetryConfig = Field(default_factory=RetryConfig)
    connect_timeout_s: float = 15.0
    request_timeout_s: float = 30.0
    search_timeout_s: float = 60.0

    database_path: str = "momentum.db"
    work_item_stale_after_s: int = 15 * 60
    briefing_staleness_s: int = 4 * 60 * 60
    default_tool_name: str = "Cursor"

    def providers(self) -> Dict[str, ProviderConfig]:
        return {
            "fast": self.fast_provider,
            "standard": self.standard_provider,
            "premium": self.premium_provider,
        }

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in ("fast_provider", "standard_provider", "premium_provider"):
            if data.get(key, {}).get("api_key"):
                data[key]["api_key"] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "groq_api_key": os.getenv("GROQ_API_KEY"),
        "groq_base_url": os.getenv("GROQ_BASE_URL"),
        "groq_model": os.getenv("GROQ_MODEL"),
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_base_url": os.getenv("OPENAI_BASE_URL"),
        "openai_model": os.getenv("OPENAI_MODEL"),
        "openai_premium_model": os.getenv("OPENAI_PREMIUM_MODEL"),
        "search_model": os.getenv("SEARCH_MODEL"),
        "max_retries": os.getenv("MAX_RETRIES"),
        "retry_base_delay_s": os.getenv("RETRY_BASE_DELAY_S"),
        "connect_timeout_s": os.getenv("CONNECT_TIMEOUT_S"),
        "request_timeout_s": os.getenv("REQUEST_TIMEOUT_S"),
        "search_timeout_s": os.getenv("SEARCH_TIMEOUT_S"),
        "database_path": os.getenv("DATABASE_PATH"),
        "work_item_stale_after_s": os.getenv("WORK_ITEM_STALE_AFTER_S"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in ("connect_timeout_s", "request_timeout_s", "search_timeout_s", "retry_base_delay_s"):
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    for key in ("max_retries", "work_item_stale_after_s"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def _fold_provider_env(merged: Dict[str, Any], env_data: Dict[str, Any], allow_env_overrides: bool) -> None:
    """Map flat provider env vars onto the nested provider blocks."""
    defaults = AppSettings()

    def apply(key: str, default: ProviderConfig, fields: Dict[str, Optional[str]]) -> None:
        block = merged.get(key)
        if not isinstance(block, dict):
            block = default.model_dump()
        for field_name, value in fields.items():
            if value in (None, ""):
                continue
            # config.json values win unless env overrides are enabled
            if allow_env_overrides or not block.get(field_name) or block.get(field_name) == getattr(
                default, field_name
            ):
                block[field_name] = value
        merged[key] = block

    apply(
        "fast_provider",
        defaults.fast_provider,
        {
            "api_key": env_data.get("groq_api_key"),
            "base_url": env_data.get("groq_base_url"),
            "model_id": env_data.get("groq_model"),
        },
    )
    apply(
        "standard_provider",
        defaults.standard_provider,
        {
            "api_key": env_data.get("openai_api_key"),
            "base_url": env_data.get("openai_base_url"),
            "model_id": env_data.get("openai_model"),
        },
    )
    apply(
        "premium_provider",
        defaults.premium_provider,
        {
            "api_key": env_data.get("openai_api_key"),
            "base_url": env_data.get("openai_base_url"),
            "model_id": env_data.get("openai_premium_model"),
        },
    )


def _fold_retry_env(
    merged: Dict[str, Any],
    file_data: Dict[str, Any],
    env_data: Dict[str, Any],
    allow_env_overrides: bool,
) -> None:
    retry = merged.get("retry")
    retry = dict(retry) if isinstance(retry, dict) else {}
    file_retry = file_data.get("retry") if isinstance(file_data.get("retry"), dict) else {}
    for env_key, field_name in (("max_retries", "max_retries"), ("retry_base_delay_s", "base_delay_s")):
        if env_key in env_data and (allow_env_overrides or field_name not in file_retry):
            retry[field_name] = env_data[env_key]
    merged["retry"] = retry


_FLAT_ENV_KEYS: List[str] = [
    "groq_api_key",
    "groq_base_url",
    "groq_model",
    "openai_api_key",
    "openai_base_url",
    "openai_model",
    "openai_premium_model",
    "max_retries",
    "retry_base_delay_s",
]


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except (OSError, ValueError):
            file_data = {}
    allow_env_overrides = _env_overrides_config()
    scalar_env = {k: v for k, v in env_data.items() if k not in _FLAT_ENV_KEYS}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if allow_env_overrides:
        merged = {**file_data, **scalar_env}
    else:
        merged = {**scalar_env, **file_data}
    _fold_provider_env(merged, env_data, allow_env_overrides)
    _fold_retry_env(merged, file_data, env_data, allow_env_overrides)
    return AppSettings(**merged)


def save_settings(settings: AppSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))
