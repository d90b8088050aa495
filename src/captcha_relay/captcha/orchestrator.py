"""Recognition orchestrator.

This module is the façade over the recognition engine: it normalizes a
capture, answers from the cache when it can, and otherwise drives the
failover state machine through the configured providers until one succeeds,
a non-retryable error occurs, or every tier is exhausted.

Callers must serialize requests per logical target: the orchestrator does
not lock its failover state, so concurrent solves see last-write-wins
updates.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import aiohttp

from captcha_relay.cache.result_cache import ResultCache
from captcha_relay.config.mcp_logger import logger
from captcha_relay.errors import CaptchaExhaustedError, ErrorKind, ProviderError
from captcha_relay.imaging.normalizer import CropRegion, ImageNormalizer, RawCapture
from captcha_relay.interfaces import ICaptureSource

from .failover import FailoverStateMachine

CACHED_STATUS = "cached"


@dataclass
class SolveResult:
    """Outcome of a successful solve.
    
    Attributes:
        text: Recognized captcha text.
        status: Human-readable tag: the tier/provider used, or ``cached``.
        fingerprint: Fingerprint of the normalized image.
        cached: Whether the text came from the cache.
        tier: Tier that produced the text (None for cache hits).
        provider: Provider name (None for cache hits).
    """
    text: str
    status: str
    fingerprint: str
    cached: bool = False
    tier: Optional[int] = None
    provider: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CaptchaOrchestrator:
    """Drives recognition requests through cache and provider tiers."""
    
    def __init__(
        self,
        state_machine: FailoverStateMachine,
        cache: ResultCache,
        normalizer: Optional[ImageNormalizer] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the orchestrator.
        
        Args:
            state_machine: Failover policy over the provider tiers.
            cache: Confirmed-result cache.
            normalizer: Image normalizer. Uses defaults if not provided.
            session: HTTP session shared by the providers. The orchestrator
                takes ownership and closes it in ``close()``.
        """
        self.state_machine = state_machine
        self.session = session
        self.cache = cache
        self.normalizer = normalizer or ImageNormalizer()
        self.logger = logger.bind(component="orchestrator")
    
    async def solve(self, raw_capture: RawCapture, region: CropRegion) -> SolveResult:
        """Recognize the captcha inside ``region`` of a full-frame capture.
        
        Args:
            raw_capture: Screenshot bytes, base64 string or ``data:`` URL.
            region: Captcha rectangle in CSS pixels plus device pixel ratio.
        
        Returns:
            The recognized text with its status tag.
        
        Raises:
            CaptureDecodeError: If the capture cannot be decoded.
            InvalidCropError: If the crop region has zero area.
            ProviderError: For non-retryable provider failures such as a
                missing credential. The failover state is left untouched.
            CaptchaExhaustedError: When every tier failed.
        """
        image = self.normalizer.normalize(raw_capture, region)
        
        cached_text = await self.cache.get(image.fingerprint)
        if cached_text is not None:
            return SolveResult(
                text=cached_text,
                status=CACHED_STATUS,
                fingerprint=image.fingerprint,
                cached=True
            )
        
        machine = self.state_machine
        machine.check_recovery()
        self.logger.info("solve_started", status=machine.status_indicator())
        
        last_error: Optional[BaseException] = None
        last_tier = min(machine.state.current_tier, machine.max_tier)
        
        while not machine.is_exhausted:
            provider = machine.current_provider()
            tier = machine.state.current_tier
            status = machine.status_indicator()
            last_tier = tier
            
            self.logger.info("provider_attempt", status=status, provider=provider.name)
            try:
                text = await self._call_provider(provider, image)
            except ProviderError as e:
                last_error = e
                self.logger.warning(
                    "provider_call_failed",
                    status=status,
                    error=str(e),
                    kind=e.kind.value,
                    status_code=e.status_code
                )
                if not machine.should_failover(e):
                    raise
                machine.advance(f"{provider.name}: {e}")
                continue
            
            self.cache.set_pending_candidate(image.fingerprint, text)
            self.logger.info("solve_succeeded", status=status)
            return SolveResult(
                text=text,
                status=status,
                fingerprint=image.fingerprint,
                tier=tier,
                provider=provider.name
            )
        
        exhausted = CaptchaExhaustedError(
            last_tier=last_tier,
            status=machine.status_indicator(),
            last_error=last_error
        )
        self.logger.error("all_providers_exhausted", last_tier=last_tier, error=str(last_error))
        raise exhausted from last_error
    
    async def _call_provider(self, provider, image) -> str:
        timeout = self.state_machine.config.call_timeout
        try:
            return await asyncio.wait_for(provider.recognize(image), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Timeout after {timeout}s",
                kind=ErrorKind.TIMEOUT,
                status_code=408,
                provider=provider.name
            ) from e
    
    async def capture_and_solve(self, source: ICaptureSource, region: CropRegion) -> SolveResult:
        """Pull a frame from the capture collaborator, then solve it.
        
        Raises:
            CaptureError: If the collaborator cannot provide a frame.
        """
        raw_capture = await source.capture()
        return await self.solve(raw_capture, region)
    
    async def confirm_last_solve(self) -> bool:
        """Confirmation hook: the last solve was correct, keep it."""
        return await self.cache.commit_pending()
    
    def get_status(self) -> Dict[str, Any]:
        """Failover and cache status for monitoring."""
        status = self.state_machine.get_status()
        status["cache"] = self.cache.get_status()
        return status
    
    async def close(self) -> None:
        """Release provider sessions and the shared HTTP session."""
        for tier in self.state_machine.tiers:
            for provider in tier:
                close = getattr(provider, "close", None)
                if close is not None:
                    await close()
        
        if self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None
        self.logger.info("orchestrator_closed")
    
    async def __aenter__(self):
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
