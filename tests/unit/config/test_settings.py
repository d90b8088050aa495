"""Tests for environment-driven settings."""

from datetime import timedelta

import pytest

from captcha_relay.config.settings import (
    DEFAULT_TIER1_MODELS,
    DEFAULT_TIER2_MODELS,
    CaptchaSettings,
    load_settings,
)


@pytest.fixture
def env_file(tmp_path):
    """Path to a .env file that does not exist yet"""
    return tmp_path / ".env"


class TestLoadSettings:
    def test_defaults(self, clean_env, env_file):
        settings = load_settings(str(env_file))
        
        assert settings.tier1_models == DEFAULT_TIER1_MODELS
        assert settings.tier2_models == DEFAULT_TIER2_MODELS
        assert settings.enable_nopecha is True
        assert settings.cooldown == timedelta(minutes=5)
        assert settings.call_timeout == 35.0
        assert settings.poll_interval == 0.5
        assert settings.max_poll_attempts == 20
        assert (settings.min_length, settings.max_length) == (3, 8)
        assert settings.cache_dir is None
    
    def test_environment_overrides(self, clean_env, env_file):
        clean_env.setenv("CAPTCHA_TIER1_MODELS", "a/one, b/two ,")
        clean_env.setenv("CAPTCHA_TIER2_MODELS", "")
        clean_env.setenv("CAPTCHA_ENABLE_NOPECHA", "false")
        clean_env.setenv("CAPTCHA_COOLDOWN_SECONDS", "60")
        clean_env.setenv("CAPTCHA_ENHANCE", "yes")
        clean_env.setenv("CAPTCHA_CACHE_DIR", "/tmp/captcha-cache")
        
        settings = load_settings(str(env_file))
        
        assert settings.tier1_models == ["a/one", "b/two"]
        assert settings.tier2_models == []
        assert settings.enable_nopecha is False
        assert settings.cooldown_seconds == 60.0
        assert settings.enhance is True
        assert settings.cache_dir == "/tmp/captcha-cache"
    
    def test_dotenv_file(self, clean_env, env_file):
        env_file.write_text("CAPTCHA_MAX_POLL_ATTEMPTS=5\nCAPTCHA_CALL_TIMEOUT=12.5\n")
        
        settings = load_settings(str(env_file))
        
        assert settings.max_poll_attempts == 5
        assert settings.call_timeout == 12.5
    
    def test_invalid_number(self, clean_env, env_file):
        clean_env.setenv("CAPTCHA_MAX_POLL_ATTEMPTS", "many")
        
        with pytest.raises(ValueError):
            load_settings(str(env_file))
    
    def test_dataclass_defaults_are_independent(self):
        first = CaptchaSettings()
        first.tier1_models.append("extra")
        
        assert CaptchaSettings().tier1_models == DEFAULT_TIER1_MODELS
