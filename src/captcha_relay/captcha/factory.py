"""
Provider factory
Design Pattern: Factory Method + Registry Pattern
"""
from enum import Enum
from typing import Dict, List, Optional, Type

import aiohttp
import structlog

from captcha_relay.cache import EncryptedCacheStorage, InMemoryCacheStorage, ResultCache
from captcha_relay.config.settings import CaptchaSettings
from captcha_relay.imaging.normalizer import ImageNormalizer
from captcha_relay.interfaces import ICredentialStore

from .failover import FailoverConfig, FailoverStateMachine
from .orchestrator import CaptchaOrchestrator
from .providers import BaseRecognitionProvider, NoPeCHAProvider, OpenRouterProvider

logger = structlog.get_logger()


class ProviderKind(Enum):
    """Supported provider backends"""
    OPENROUTER = "openrouter"
    NOPECHA = "nopecha"


class ProviderFactory:
    """
    Factory for recognition providers.
    Tiers are plain configuration: any number of tiers, any number of
    providers per tier.
    """

    # Registry of available providers
    _providers: Dict[ProviderKind, Type[BaseRecognitionProvider]] = {
        ProviderKind.OPENROUTER: OpenRouterProvider,
        ProviderKind.NOPECHA: NoPeCHAProvider,
    }

    @classmethod
    def register_provider(
            cls,
            kind: ProviderKind,
            provider_class: Type[BaseRecognitionProvider]
    ) -> None:
        """Register a new provider type"""
        cls._providers[kind] = provider_class
        logger.info("provider_registered", kind=kind.value, provider_class=provider_class.__name__)

    @classmethod
    def create(cls, kind: ProviderKind, **kwargs) -> BaseRecognitionProvider:
        """Instantiate a registered provider"""
        if kind not in cls._providers:
            raise ValueError(f"Unknown provider kind: {kind}")

        return cls._providers[kind](**kwargs)

    @classmethod
    def build_tiers(
            cls,
            settings: CaptchaSettings,
            credentials: ICredentialStore,
            session: Optional[aiohttp.ClientSession] = None
    ) -> List[List[BaseRecognitionProvider]]:
        """Build the tier list described by the settings.

        OpenRouter model lists become tiers 1 and 2 (empty lists are skipped);
        NoPeCHA, when enabled, is the last tier.
        """
        common = dict(
            credentials=credentials,
            session=session,
            timeout=settings.call_timeout,
            min_length=settings.min_length,
            max_length=settings.max_length,
        )

        tiers: List[List[BaseRecognitionProvider]] = []
        for models in (settings.tier1_models, settings.tier2_models):
            if models:
                tiers.append([
                    cls.create(ProviderKind.OPENROUTER, model=model, **common)
                    for model in models
                ])

        if settings.enable_nopecha:
            tiers.append([
                cls.create(
                    ProviderKind.NOPECHA,
                    poll_interval=settings.poll_interval,
                    max_poll_attempts=settings.max_poll_attempts,
                    **common
                )
            ])

        for number, tier in enumerate(tiers, start=1):
            logger.info("tier_configured", tier=number, providers=[p.name for p in tier])
        return tiers


def create_orchestrator(
        settings: CaptchaSettings,
        credentials: ICredentialStore,
        session: Optional[aiohttp.ClientSession] = None
) -> CaptchaOrchestrator:
    """Assemble providers, failover policy, cache and normalizer from settings.

    Without an injected session one aiohttp session is created for all
    providers and handed to the orchestrator, which closes it in
    ``close()``. That case must run inside an event loop.

    Raises:
        ValueError: If the settings describe no providers at all.
    """
    if not (settings.tier1_models or settings.tier2_models or settings.enable_nopecha):
        raise ValueError("No recognition providers configured")

    if settings.cache_dir:
        storage = EncryptedCacheStorage(settings.cache_dir, settings.cache_key)
    else:
        storage = InMemoryCacheStorage()

    normalizer = ImageNormalizer(scale=settings.scale, enhance=settings.enhance)

    owned_session = None
    if session is None:
        session = owned_session = aiohttp.ClientSession()

    tiers = ProviderFactory.build_tiers(settings, credentials, session)
    state_machine = FailoverStateMachine(
        tiers,
        FailoverConfig(cooldown=settings.cooldown, call_timeout=settings.call_timeout)
    )
    return CaptchaOrchestrator(state_machine, ResultCache(storage), normalizer, session=owned_session)
