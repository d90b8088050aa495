"""Tests for the recognition orchestrator."""

import asyncio
from datetime import timedelta

import pytest

from captcha_relay.cache import InMemoryCacheStorage, ResultCache
from captcha_relay.captcha.failover import FailoverConfig, FailoverStateMachine
from captcha_relay.captcha.orchestrator import CACHED_STATUS, CaptchaOrchestrator
from captcha_relay.captcha.providers import OpenRouterProvider
from captcha_relay.errors import (
    CaptchaExhaustedError,
    CaptureDecodeError,
    CaptureError,
    ErrorKind,
    InvalidCropError,
    MissingCredentialError,
    ProviderError,
)
from captcha_relay.imaging.normalizer import CropRegion
from captcha_relay.interfaces import ICaptureSource, IRecognitionProvider
from tests.fixtures.http_fixtures import FakeResponse, FakeSession
from tests.fixtures.image_fixtures import as_data_url, make_capture


class ScriptedProvider(IRecognitionProvider):
    """Provider returning (or raising) a scripted sequence of outcomes."""
    
    def __init__(self, name: str, *outcomes, delay: float = 0.0):
        self.name = name
        self.timeout = 5.0
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls = 0
    
    async def recognize(self, image) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StaticCapture(ICaptureSource):
    def __init__(self, frame):
        self.frame = frame
    
    async def capture(self):
        if isinstance(self.frame, BaseException):
            raise self.frame
        return self.frame


def transient(status_code=503):
    return ProviderError("service unavailable", kind=ErrorKind.TRANSIENT, status_code=status_code)


def build_orchestrator(tiers, clock, call_timeout=5.0):
    machine = FailoverStateMachine(
        tiers,
        FailoverConfig(cooldown=timedelta(minutes=5), call_timeout=call_timeout),
        clock=clock
    )
    return CaptchaOrchestrator(machine, ResultCache(InMemoryCacheStorage()))


class TestCaptchaOrchestrator:
    """Tests for the solve loop."""
    
    @pytest.mark.asyncio
    async def test_tier_one_success(self, clock, capture_bytes, region):
        """The first provider answers; the result is held as pending."""
        p1 = ScriptedProvider("model-a", "AB12")
        p2 = ScriptedProvider("model-b", "ZZZZ")
        orchestrator = build_orchestrator([[p1, p2]], clock)
        
        result = await orchestrator.solve(capture_bytes, region)
        
        assert result.text == "AB12"
        assert result.status == "Tier 1.1 model-a"
        assert result.cached is False
        assert result.tier == 1
        assert result.provider == "model-a"
        assert p2.calls == 0
        assert orchestrator.cache.pending.fingerprint == result.fingerprint
    
    @pytest.mark.asyncio
    async def test_confirmed_result_is_served_from_cache(self, clock, capture_bytes, region):
        """Identical fingerprints hit the cache with zero provider calls."""
        provider = ScriptedProvider("model-a", "AB12")
        orchestrator = build_orchestrator([[provider]], clock)
        
        first = await orchestrator.solve(capture_bytes, region)
        assert await orchestrator.confirm_last_solve() is True
        
        second = await orchestrator.solve(capture_bytes, region)
        
        assert provider.calls == 1
        assert second.cached is True
        assert second.status == CACHED_STATUS
        assert second.text == "AB12"
        assert second.fingerprint == first.fingerprint
    
    @pytest.mark.asyncio
    async def test_unconfirmed_result_is_not_cached(self, clock, capture_bytes, region):
        provider = ScriptedProvider("model-a", "AB12")
        orchestrator = build_orchestrator([[provider]], clock)
        
        await orchestrator.solve(capture_bytes, region)
        await orchestrator.solve(capture_bytes, region)
        
        assert provider.calls == 2
    
    @pytest.mark.asyncio
    async def test_retryable_failure_moves_to_next_provider(self, clock, capture_bytes, region):
        p1 = ScriptedProvider("model-a", ProviderError("junk", kind=ErrorKind.MALFORMED_RESPONSE))
        p2 = ScriptedProvider("model-b", "QW34")
        orchestrator = build_orchestrator([[p1, p2]], clock)
        
        result = await orchestrator.solve(capture_bytes, region)
        
        assert result.text == "QW34"
        assert result.status == "Tier 1.2 model-b"
        assert orchestrator.state_machine.state.provider_index == 1
    
    @pytest.mark.asyncio
    async def test_failover_crosses_tiers(self, clock, capture_bytes, region):
        p1 = ScriptedProvider("model-a", transient(429))
        p2 = ScriptedProvider("nopecha", "LAST1")
        orchestrator = build_orchestrator([[p1], [p2]], clock)
        
        result = await orchestrator.solve(capture_bytes, region)
        
        assert result.tier == 2
        assert result.status == "Tier 2.1 nopecha"
    
    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self, clock, capture_bytes, region):
        """A missing credential fails the solve without advancing the tier."""
        p1 = ScriptedProvider("model-a", MissingCredentialError("openrouter_api_key"))
        p2 = ScriptedProvider("model-b", "NEVER")
        orchestrator = build_orchestrator([[p1], [p2]], clock)
        
        with pytest.raises(MissingCredentialError):
            await orchestrator.solve(capture_bytes, region)
        
        assert p2.calls == 0
        assert orchestrator.state_machine.state.current_tier == 1
        assert orchestrator.state_machine.state.provider_index == 0
        assert orchestrator.state_machine.state.last_advance_time is None
    
    @pytest.mark.asyncio
    async def test_unexpected_exception_propagates(self, clock, capture_bytes, region):
        p1 = ScriptedProvider("model-a", RuntimeError("bug"))
        orchestrator = build_orchestrator([[p1], [ScriptedProvider("b", "XXXX")]], clock)
        
        with pytest.raises(RuntimeError):
            await orchestrator.solve(capture_bytes, region)
        
        assert orchestrator.state_machine.state.current_tier == 1
    
    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self, clock, capture_bytes, region):
        last = transient(502)
        p1 = ScriptedProvider("model-a", transient(503))
        p2 = ScriptedProvider("model-b", last)
        orchestrator = build_orchestrator([[p1], [p2]], clock)
        
        with pytest.raises(CaptchaExhaustedError) as exc_info:
            await orchestrator.solve(capture_bytes, region)
        
        error = exc_info.value
        assert error.__cause__ is last
        assert error.last_error is last
        assert error.last_tier == 2
        assert error.status == "All Down"
        assert error.kind == ErrorKind.EXHAUSTED
        assert "last tier attempted: 2" in str(error)
        assert orchestrator.state_machine.is_exhausted
    
    @pytest.mark.asyncio
    async def test_exhausted_fails_fast_until_cooldown(self, clock, capture_bytes, region):
        """Before the cooldown no provider is called; after it tier 1 is retried."""
        p1 = ScriptedProvider("model-a", transient(), "AB12")
        orchestrator = build_orchestrator([[p1]], clock)
        
        with pytest.raises(CaptchaExhaustedError):
            await orchestrator.solve(capture_bytes, region)
        assert p1.calls == 1
        
        clock.advance(timedelta(minutes=5) - timedelta(milliseconds=1))
        with pytest.raises(CaptchaExhaustedError) as exc_info:
            await orchestrator.solve(capture_bytes, region)
        assert p1.calls == 1
        assert exc_info.value.__cause__ is None
        assert exc_info.value.last_tier == 1
        
        clock.advance(timedelta(milliseconds=1))
        result = await orchestrator.solve(capture_bytes, region)
        assert p1.calls == 2
        assert result.text == "AB12"
        assert result.status == "Tier 1.1 model-a"
    
    @pytest.mark.asyncio
    async def test_slow_provider_times_out_and_fails_over(self, clock, capture_bytes, region):
        slow = ScriptedProvider("slow", "SLOW1", delay=1.0)
        fast = ScriptedProvider("fast", "FAST1")
        orchestrator = build_orchestrator([[slow, fast]], clock, call_timeout=0.05)
        
        result = await orchestrator.solve(capture_bytes, region)
        
        assert result.text == "FAST1"
        assert slow.calls == 1
    
    @pytest.mark.asyncio
    async def test_decode_error_before_any_provider_call(self, clock, region):
        provider = ScriptedProvider("model-a", "AB12")
        orchestrator = build_orchestrator([[provider]], clock)
        
        with pytest.raises(CaptureDecodeError):
            await orchestrator.solve(b"not an image", region)
        
        assert provider.calls == 0
    
    @pytest.mark.asyncio
    async def test_invalid_crop(self, clock, capture_bytes):
        provider = ScriptedProvider("model-a", "AB12")
        orchestrator = build_orchestrator([[provider]], clock)
        
        with pytest.raises(InvalidCropError):
            await orchestrator.solve(capture_bytes, CropRegion(10, 20, 0, 40))
        
        assert provider.calls == 0
    
    @pytest.mark.asyncio
    async def test_capture_and_solve(self, clock, capture_bytes, region):
        provider = ScriptedProvider("model-a", "AB12")
        orchestrator = build_orchestrator([[provider]], clock)
        
        result = await orchestrator.capture_and_solve(
            StaticCapture(as_data_url(capture_bytes)), region
        )
        
        assert result.text == "AB12"
    
    @pytest.mark.asyncio
    async def test_capture_failure_propagates(self, clock, region):
        orchestrator = build_orchestrator([[ScriptedProvider("a", "AB12")]], clock)
        
        with pytest.raises(CaptureError, match="CAPTURE_FAILED"):
            await orchestrator.capture_and_solve(StaticCapture(CaptureError("CAPTURE_FAILED")), region)
    
    @pytest.mark.asyncio
    async def test_confirm_without_solve(self, clock):
        orchestrator = build_orchestrator([[ScriptedProvider("a", "AB12")]], clock)
        assert await orchestrator.confirm_last_solve() is False
    
    def test_get_status_includes_cache(self, clock):
        orchestrator = build_orchestrator([[ScriptedProvider("a", "AB12")]], clock)
        
        status = orchestrator.get_status()
        
        assert status["status"] == "Tier 1.1 a"
        assert status["cache"]["storage"] == "InMemoryCacheStorage"
        assert status["cache"]["pending"] is None


class TestEndToEnd:
    """Capture + crop + real OpenRouter adapter over a fake HTTP session."""
    
    @pytest.mark.asyncio
    async def test_cleaned_text_from_tier_one(self, clock, credentials, region):
        session = FakeSession(post=[FakeResponse(json_body={
            "choices": [{"message": {"content": "  AB12!! "}}]
        })])
        provider = OpenRouterProvider("model-a", credentials, session=session)
        orchestrator = build_orchestrator([[provider]], clock)
        
        result = await orchestrator.solve(make_capture(), region)
        
        assert result.text == "AB12"
        assert result.tier == 1
    
    @pytest.mark.asyncio
    async def test_two_character_reply_fails_over(self, clock, credentials, region):
        session = FakeSession(post=[
            FakeResponse(json_body={"choices": [{"message": {"content": "A!2"}}]}),
            FakeResponse(json_body={"choices": [{"message": {"content": "K7M2P"}}]}),
        ])
        first = OpenRouterProvider("model-a", credentials, session=session)
        second = OpenRouterProvider("model-b", credentials, session=session)
        orchestrator = build_orchestrator([[first, second]], clock)
        
        result = await orchestrator.solve(make_capture(), region)
        
        assert result.text == "K7M2P"
        assert result.provider == "model-b"
        assert len(session.requests) == 2
        assert orchestrator.state_machine.state.last_advance_time == clock.now
    
    @pytest.mark.asyncio
    async def test_message_without_object_fails_over(self, clock, credentials, region):
        """A reply whose message is a bare string moves on to the next model."""
        session = FakeSession(post=[
            FakeResponse(json_body={"choices": [{"message": "AB12"}]}),
            FakeResponse(json_body={"choices": [{"message": {"content": "K7M2P"}}]}),
        ])
        first = OpenRouterProvider("model-a", credentials, session=session)
        second = OpenRouterProvider("model-b", credentials, session=session)
        orchestrator = build_orchestrator([[first, second]], clock)
        
        result = await orchestrator.solve(make_capture(), region)
        
        assert result.text == "K7M2P"
        assert result.status == "Tier 1.2 model-b"


class TestOrchestratorClose:
    @pytest.mark.asyncio
    async def test_close_releases_providers_and_session(self, clock, credentials):
        session = FakeSession()
        provider = OpenRouterProvider("model-a", credentials, session=session)
        machine = FailoverStateMachine([[provider], [ScriptedProvider("b", "XXXX")]], clock=clock)
        
        async with CaptchaOrchestrator(machine, ResultCache(InMemoryCacheStorage()), session=session):
            pass
        
        assert session.closed is True
        assert provider.session is None
