"""Limit scope router.

Maps a request's addressing context to the scopes it must pass and
aggregates the per-scope outcomes into one decision.
"""

from typing import Dict, Iterable, Optional

from botguard.app.core.config import Settings, settings as default_settings
from botguard.app.exceptions import ConfigurationError

from .engine import TokenBucketEngine, current_timestamp
from .models import AggregatedDecision, ScopeConfig

CHAT_SCOPE = "chat"
GLOBAL_SCOPE = "global"
BROADCAST_SCOPE = "broadcast"

INBOUND_SCOPES = (CHAT_SCOPE, GLOBAL_SCOPE)
# Outbound sends share the per-chat bucket with inbound processing.
OUTBOUND_SCOPES = (CHAT_SCOPE,)

# Outbound API methods that count against the per-chat budget
OUTBOUND_METHODS = frozenset({"sendMessage", "editMessageText", "editMessageCaption"})

DEFAULT_BOT_KEY = "default"


def scope_identifier(scope_name: str, chat_id: object = None, bot_id: object = None) -> object:
    """Identifier that completes a scope key: the chat for per-chat, else the bot."""
    if scope_name == CHAT_SCOPE:
        return chat_id
    return bot_id if bot_id else DEFAULT_BOT_KEY


def build_scopes(settings: Optional[Settings] = None) -> Dict[str, ScopeConfig]:
    """Build the scope table from settings.

    Raises:
        ConfigurationError: If a scope has a non-positive limit or window
    """
    settings = settings or default_settings
    table = {
        CHAT_SCOPE: (settings.rate_limit_per_chat_messages, settings.rate_limit_per_chat_window, "rate:chat"),
        GLOBAL_SCOPE: (settings.rate_limit_global_messages, settings.rate_limit_global_window, "rate:global"),
        BROADCAST_SCOPE: (settings.rate_limit_broadcast_messages, settings.rate_limit_broadcast_window, "rate:broadcast"),
    }
    scopes = {}
    for name, (messages, window_ms, prefix) in table.items():
        if messages <= 0 or window_ms <= 0:
            raise ConfigurationError(f"{name} rate limit messages and window must be positive numbers")
        scopes[name] = ScopeConfig.from_window(name, messages, window_ms, prefix)
    return scopes


class LimitScopeRouter:
    """Derives bucket keys per scope and aggregates their outcomes."""

    def __init__(self, engine: TokenBucketEngine, scopes: Optional[Dict[str, ScopeConfig]] = None) -> None:
        self.engine = engine
        self.scopes = scopes if scopes is not None else build_scopes()

    def key_for(self, scope_name: str, chat_id: object = None, bot_id: object = None) -> str:
        """Return the bucket key of a scope for the given context."""
        return self.scopes[scope_name].key_for(scope_identifier(scope_name, chat_id, bot_id))

    async def evaluate(
        self,
        scope_names: Iterable[str],
        chat_id: object = None,
        bot_id: object = None,
        tokens: int = 1,
        now: Optional[int] = None,
    ) -> AggregatedDecision:
        """Evaluate every named scope in order and aggregate the outcomes.

        All scopes are consumed even when an earlier one denies.
        """
        if now is None:
            now = current_timestamp()
        outcomes = []
        for name in scope_names:
            scope = self.scopes[name]
            outcomes.append(
                await self.engine.evaluate(
                    scope, scope_identifier(name, chat_id, bot_id), tokens, now
                )
            )
        return AggregatedDecision.from_outcomes(outcomes)

    async def check_inbound(
        self, chat_id: object, bot_id: object = None, tokens: int = 1, now: Optional[int] = None
    ) -> AggregatedDecision:
        """Check per-chat and global limits for an incoming update."""
        if not chat_id:
            return AggregatedDecision.bypassed()
        return await self.evaluate(INBOUND_SCOPES, chat_id, bot_id, tokens, now)

    async def check_outbound(
        self, method: str, chat_id: object, tokens: int = 1, now: Optional[int] = None
    ) -> AggregatedDecision:
        """Check the per-chat limit for an outgoing message-sending call."""
        if method not in OUTBOUND_METHODS or not chat_id:
            return AggregatedDecision.bypassed()
        return await self.evaluate(OUTBOUND_SCOPES, chat_id, None, tokens, now)

    async def check_broadcast(
        self, bot_id: object = None, tokens: int = 1, now: Optional[int] = None
    ) -> AggregatedDecision:
        """Check the broadcast limit for bulk sends."""
        return await self.evaluate((BROADCAST_SCOPE,), None, bot_id, tokens, now)
