"""Runtime settings for the recognition orchestrator.

Values come from the process environment; a ``.env`` file in the working
directory is loaded first with python-dotenv so local development does not
need exported variables.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_TIER1_MODELS = [
    "google/gemini-2.0-flash-exp:free",
    "google/gemini-2.0-pro-exp-02-05:free",
]
DEFAULT_TIER2_MODELS = [
    "amazon/nova-lite-v1:1.0",
    "mistralai/mistral-small-24b-instruct-2501:free",
]


@dataclass
class CaptchaSettings:
    """Settings used to assemble providers, cache and failover policy.
    
    Attributes:
        tier1_models: OpenRouter models tried first, in order.
        tier2_models: OpenRouter models used as backup tier.
        enable_nopecha: Whether NoPeCHA is appended as the last tier.
        cooldown_seconds: Time before the machine may return to tier 1.
        call_timeout: Per-provider call timeout in seconds.
        poll_interval: NoPeCHA poll interval in seconds.
        max_poll_attempts: NoPeCHA poll ceiling.
        min_length: Shortest accepted recognized token.
        max_length: Longest accepted recognized token.
        scale: Upscale factor applied by the normalizer.
        enhance: Whether the normalizer binarizes the crop.
        cache_dir: Directory for the encrypted cache; in-memory when unset.
        cache_key: Fernet key for the encrypted cache.
    """
    tier1_models: List[str] = field(default_factory=lambda: list(DEFAULT_TIER1_MODELS))
    tier2_models: List[str] = field(default_factory=lambda: list(DEFAULT_TIER2_MODELS))
    enable_nopecha: bool = True
    cooldown_seconds: float = 300.0
    call_timeout: float = 35.0
    poll_interval: float = 0.5
    max_poll_attempts: int = 20
    min_length: int = 3
    max_length: int = 8
    scale: float = 2.0
    enhance: bool = False
    cache_dir: Optional[str] = None
    cache_key: Optional[str] = None
    
    @property
    def cooldown(self) -> timedelta:
        return timedelta(seconds=self.cooldown_seconds)


def _split_models(value: Optional[str], default: List[str]) -> List[str]:
    if value is None:
        return list(default)
    return [model.strip() for model in value.split(",") if model.strip()]


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_file: Optional[str] = None) -> CaptchaSettings:
    """Build settings from the environment.
    
    Args:
        env_file: Optional explicit ``.env`` path. Existing environment
            variables always win over values from the file.
    
    Returns:
        CaptchaSettings populated from ``CAPTCHA_*`` variables.
    
    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    load_dotenv(env_file)
    
    return CaptchaSettings(
        tier1_models=_split_models(os.getenv("CAPTCHA_TIER1_MODELS"), DEFAULT_TIER1_MODELS),
        tier2_models=_split_models(os.getenv("CAPTCHA_TIER2_MODELS"), DEFAULT_TIER2_MODELS),
        enable_nopecha=_as_bool(os.getenv("CAPTCHA_ENABLE_NOPECHA"), True),
        cooldown_seconds=float(os.getenv("CAPTCHA_COOLDOWN_SECONDS", "300")),
        call_timeout=float(os.getenv("CAPTCHA_CALL_TIMEOUT", "35")),
        poll_interval=float(os.getenv("CAPTCHA_POLL_INTERVAL", "0.5")),
        max_poll_attempts=int(os.getenv("CAPTCHA_MAX_POLL_ATTEMPTS", "20")),
        min_length=int(os.getenv("CAPTCHA_MIN_LENGTH", "3")),
        max_length=int(os.getenv("CAPTCHA_MAX_LENGTH", "8")),
        scale=float(os.getenv("CAPTCHA_SCALE", "2.0")),
        enhance=_as_bool(os.getenv("CAPTCHA_ENHANCE"), False),
        cache_dir=os.getenv("CAPTCHA_CACHE_DIR") or None,
        cache_key=os.getenv("CAPTCHA_CACHE_KEY") or None,
    )
