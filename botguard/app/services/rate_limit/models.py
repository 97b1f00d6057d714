"""Data models for distributed rate limiting."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class ScopeConfig:
    """Static configuration of one rate limit scope.

    Attributes:
        name: Scope name (chat, global, broadcast)
        capacity: Maximum tokens, i.e. burst size
        refill_rate: Tokens restored per second
        key_prefix: Redis key prefix; the full key is ``{key_prefix}:{identifier}``
    """
    name: str
    capacity: int
    refill_rate: float
    key_prefix: str

    @classmethod
    def from_window(cls, name: str, messages: int, window_ms: int, key_prefix: str) -> "ScopeConfig":
        """Build a scope allowing ``messages`` per ``window_ms`` milliseconds."""
        return cls(
            name=name,
            capacity=messages,
            refill_rate=messages / (window_ms / 1000),
            key_prefix=key_prefix,
        )

    @property
    def ttl_seconds(self) -> int:
        """Time for an empty bucket to refill completely."""
        return math.ceil(self.capacity / self.refill_rate)

    def key_for(self, identifier: object) -> str:
        return f"{self.key_prefix}:{identifier}"


@dataclass
class ConsumeResult:
    """Raw result of one atomic consume against a bucket.

    ``remaining`` is the headroom consumed so far, ``capacity - tokens``,
    not the number of tokens left. ``retry_after`` is in seconds and only
    set on denial.
    """
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None


@dataclass
class RateLimitOutcome:
    """Result of evaluating one scope for one request."""
    scope: str
    key: str
    allowed: bool
    remaining: int
    reset_at: float
    retry_after_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "key": self.key,
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "retry_after_ms": self.retry_after_ms,
        }


class DecisionKind(str, Enum):
    """Classification of an aggregated decision."""
    ALLOWED = "allowed"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    # No bucket was touched: limiter off, or no conversation identifier
    BYPASSED = "bypassed"
    # Store failed and the deployment fails open
    DEGRADED = "degraded"


@dataclass
class AggregatedDecision:
    """Combined allow/deny result across every scope of one request."""
    kind: DecisionKind
    outcomes: Dict[str, RateLimitOutcome] = field(default_factory=dict)
    denied_scopes: List[str] = field(default_factory=list)
    retry_after_ms: Optional[int] = None
    error: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.kind not in (DecisionKind.RATE_LIMITED, DecisionKind.SERVICE_UNAVAILABLE)

    @property
    def denied_scope(self) -> Optional[str]:
        """First scope that denied the request, for diagnostics."""
        return self.denied_scopes[0] if self.denied_scopes else None

    @classmethod
    def bypassed(cls) -> "AggregatedDecision":
        return cls(kind=DecisionKind.BYPASSED)

    @classmethod
    def from_outcomes(cls, outcomes: List[RateLimitOutcome]) -> "AggregatedDecision":
        """Aggregate scope outcomes: allowed only if every scope allowed.

        The retry hint is the largest hint among the denying scopes.
        """
        denied = [o for o in outcomes if not o.allowed]
        hints = [o.retry_after_ms for o in denied if o.retry_after_ms is not None]
        return cls(
            kind=DecisionKind.RATE_LIMITED if denied else DecisionKind.ALLOWED,
            outcomes={o.scope: o for o in outcomes},
            denied_scopes=[o.scope for o in denied],
            retry_after_ms=max(hints) if hints else None,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "allowed": self.allowed,
            "outcomes": {name: o.to_dict() for name, o in self.outcomes.items()},
            "denied_scope": self.denied_scope,
            "retry_after_ms": self.retry_after_ms,
            "error": self.error,
        }


@dataclass
class BucketStats:
    """Raw bucket state as stored under a scope key."""
    key: str
    tokens: float
    last_refill: int

    def to_dict(self) -> dict:
        return {"key": self.key, "tokens": self.tokens, "last_refill": self.last_refill}
