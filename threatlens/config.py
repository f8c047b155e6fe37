# threatlens/config.py
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from the environment"""
    safe_browsing_api_key: Optional[str] = None
    virustotal_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    domain_age_enabled: bool = True
    signal_budget_seconds: float = 4.0
    signal_cache_ttl_seconds: float = 1800
    signal_cache_max_entries: int = 1000
    brand_patterns_path: Optional[str] = None
    log_level: str = "INFO"
    debug: bool = False


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings, pulling a .env file into the environment first"""
    load_dotenv(env_file)

    return Settings(
        safe_browsing_api_key=os.getenv("SAFE_BROWSING_API_KEY") or None,
        virustotal_api_key=os.getenv("VIRUSTOTAL_API_KEY") or None,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
        domain_age_enabled=_flag(os.getenv("DOMAIN_AGE_ENABLED"), True),
        signal_budget_seconds=_float("SIGNAL_BUDGET_SECONDS", 4.0),
        signal_cache_ttl_seconds=_float("SIGNAL_CACHE_TTL_SECONDS", 1800),
        signal_cache_max_entries=int(_float("SIGNAL_CACHE_MAX_ENTRIES", 1000)),
        brand_patterns_path=os.getenv("BRAND_PATTERNS_PATH") or None,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        debug=_flag(os.getenv("DEBUG"), False),
    )
