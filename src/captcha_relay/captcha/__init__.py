"""Captcha recognition engine.

Main components:
- CaptchaOrchestrator: normalizes captures, checks the cache and drives providers
- FailoverStateMachine: tiered provider selection with cooldown-based recovery
- OpenRouterProvider, NoPeCHAProvider: adapters for external recognition backends
- ProviderFactory: builds provider tiers from settings
"""

# Façade
from .orchestrator import CaptchaOrchestrator, SolveResult

# Tiered failover
from .failover import FailoverConfig, FailoverState, FailoverStateMachine

# Provider adapters and their factory
from .providers import (
    BaseRecognitionProvider,
    NoPeCHAProvider,
    OpenRouterProvider,
    clean_captcha_text,
)
from .factory import ProviderFactory, ProviderKind, create_orchestrator

# Credential stores
from .credentials import EnvCredentialStore, InMemoryCredentialStore

__all__ = [
    "CaptchaOrchestrator",
    "SolveResult",
    "FailoverConfig",
    "FailoverState",
    "FailoverStateMachine",
    "BaseRecognitionProvider",
    "NoPeCHAProvider",
    "OpenRouterProvider",
    "clean_captcha_text",
    "ProviderFactory",
    "ProviderKind",
    "create_orchestrator",
    "EnvCredentialStore",
    "InMemoryCredentialStore",
]
