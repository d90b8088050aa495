"""Tiered failover state machine for recognition providers.

Providers are grouped into tiers. Lower tiers are preferred (cheap and fast);
later tiers are fallbacks. The machine walks providers in tier-then-index
order whenever a retryable failure occurs and returns to the first provider
of tier 1 once the cooldown has elapsed since the last advance.

States:
- Tier(n, index) for n in 1..max_tier
- Exhausted, represented as ``current_tier == max_tier + 1``

Recovery is evaluated, never scheduled: nothing runs in the background and
the cooldown is only checked when a new request arrives.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence

from captcha_relay.config.mcp_logger import logger
from captcha_relay.errors import ErrorKind, ProviderError
from captcha_relay.interfaces import IRecognitionProvider

DEFAULT_TRIGGER_CODES = frozenset({429, 503, 404, 400, 500, 502})

RETRYABLE_KINDS = frozenset({
    ErrorKind.TRANSIENT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.MALFORMED_RESPONSE,
    ErrorKind.TIMEOUT,
})


@dataclass
class FailoverConfig:
    """Configuration for failover behavior.
    
    Tier counts and provider lists are not part of the config: they come from
    the provider lists handed to the state machine.
    """
    cooldown: timedelta = timedelta(minutes=5)  # Time before returning to tier 1
    trigger_codes: FrozenSet[int] = DEFAULT_TRIGGER_CODES  # HTTP statuses that escalate
    call_timeout: float = 35.0  # Seconds allowed per provider call


@dataclass
class FailoverState:
    """Position of the machine in the tier/provider grid."""
    current_tier: int = 1
    provider_index: int = 0
    last_advance_time: Optional[datetime] = None


class FailoverStateMachine:
    """Owns the ordered tier list and decides when to advance or recover.
    
    The state is plain shared data with last-write-wins semantics; callers
    are expected to serialize recognition requests per target.
    """
    
    def __init__(
        self,
        tiers: Sequence[Sequence[IRecognitionProvider]],
        config: Optional[FailoverConfig] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """Initialize the state machine.
        
        Args:
            tiers: Providers grouped by tier, most preferred tier first.
            config: Failover configuration. Uses defaults if not provided.
            clock: Source of the current time, injectable for tests.
        
        Raises:
            ValueError: If there are no tiers or a tier has no providers.
        """
        if not tiers:
            raise ValueError("At least one tier of providers is required")
        for number, tier in enumerate(tiers, start=1):
            if not tier:
                raise ValueError(f"Tier {number} has no providers")
        
        self._tiers: List[List[IRecognitionProvider]] = [list(tier) for tier in tiers]
        self.config = config or FailoverConfig()
        self._clock = clock
        self._state = FailoverState()
        self.logger = logger.bind(component="failover")
    
    @property
    def state(self) -> FailoverState:
        return self._state
    
    @property
    def tiers(self) -> List[List[IRecognitionProvider]]:
        return self._tiers
    
    @property
    def max_tier(self) -> int:
        return len(self._tiers)
    
    @property
    def total_providers(self) -> int:
        return sum(len(tier) for tier in self._tiers)
    
    @property
    def is_exhausted(self) -> bool:
        return self._state.current_tier > self.max_tier
    
    def current_provider(self) -> Optional[IRecognitionProvider]:
        """Provider at the current position, or None when exhausted."""
        if self.is_exhausted:
            return None
        return self._tiers[self._state.current_tier - 1][self._state.provider_index]
    
    def status_indicator(self) -> str:
        """Human-readable position, e.g. ``Tier 2.1 amazon/nova-lite-v1:1.0``."""
        provider = self.current_provider()
        if provider is None:
            return "All Down"
        return f"Tier {self._state.current_tier}.{self._state.provider_index + 1} {provider.name}"
    
    def advance(self, reason: str) -> None:
        """Move to the next provider after a retryable failure.
        
        Args:
            reason: Short description of the failure, logged with the transition.
        """
        if self.is_exhausted:
            self.logger.warning("failover_advance_while_exhausted", reason=reason)
            return
        
        previous = self.status_indicator()
        next_tier = self._state.current_tier
        next_index = self._state.provider_index + 1
        
        if next_index >= len(self._tiers[next_tier - 1]):
            next_tier += 1
            next_index = 0
        
        self._state.current_tier = next_tier
        self._state.provider_index = next_index
        self._state.last_advance_time = self._clock()
        
        self.logger.warning(
            "failover_advanced",
            previous=previous,
            next=self.status_indicator(),
            exhausted=self.is_exhausted,
            reason=reason
        )
    
    def check_recovery(self) -> bool:
        """Return to tier 1 if the cooldown has elapsed since the last advance.
        
        Applies identically to the exhausted state.
        
        Returns:
            True if the state was reset.
        """
        if self._state.current_tier <= 1 or self._state.last_advance_time is None:
            return False
        
        elapsed = self._clock() - self._state.last_advance_time
        if elapsed < self.config.cooldown:
            return False
        
        previous = self.status_indicator()
        self._state.current_tier = 1
        self._state.provider_index = 0
        self._state.last_advance_time = None
        self.logger.info(
            "failover_recovered",
            previous=previous,
            next=self.status_indicator(),
            elapsed_seconds=elapsed.total_seconds()
        )
        return True
    
    def should_failover(self, error: BaseException) -> bool:
        """Decide whether a failure escalates to the next provider.
        
        Only provider errors are retryable: trigger status codes, timeouts,
        transient and rate-limit failures and unusable responses. Missing
        credentials, rejected requests and unexpected exceptions are not.
        """
        if not isinstance(error, ProviderError):
            return False
        if error.kind == ErrorKind.MISSING_CREDENTIAL:
            return False
        if error.status_code is not None and error.status_code in self.config.trigger_codes:
            return True
        return error.kind in RETRYABLE_KINDS
    
    def reset(self) -> None:
        """Force the machine back to the first provider of tier 1."""
        previous = self.status_indicator()
        self._state = FailoverState()
        self.logger.info("failover_reset", previous=previous, next=self.status_indicator())
    
    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the machine for status reporting."""
        provider = self.current_provider()
        return {
            "status": self.status_indicator(),
            "current_tier": self._state.current_tier,
            "provider_index": self._state.provider_index,
            "provider": provider.name if provider else None,
            "max_tier": self.max_tier,
            "exhausted": self.is_exhausted,
            "last_advance_time": (
                self._state.last_advance_time.isoformat()
                if self._state.last_advance_time else None
            ),
            "cooldown_seconds": self.config.cooldown.total_seconds(),
            "tiers": [[p.name for p in tier] for tier in self._tiers],
        }
