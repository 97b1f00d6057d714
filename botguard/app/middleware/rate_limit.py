"""Rate limiting gates for bot updates and outgoing API calls.

``RateLimitGate`` is middleware for inbound updates: it checks the per-chat
and global scopes, attaches the decision to the context as ``rate_limit``
and applies the configured consequence. ``OutboundRateLimiter`` is a
transformer for outgoing calls that draws from the same per-chat budget.
"""

import asyncio
import math
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from botguard.app.core.config import Settings, settings as default_settings
from botguard.app.core.logging import get_log_context, get_logger
from botguard.app.exceptions import ServiceUnavailableError
from botguard.app.services.rate_limit import (
    AggregatedDecision,
    DecisionKind,
    RateLimitService,
    get_rate_limit_service,
)

logger = get_logger(__name__)

NextHandler = Callable[[], Awaitable[Any]]

RATE_LIMITED_CALLBACK_TEXT = "⏱️ Please wait a moment before trying again"
RATE_LIMITED_TEXT = "⏱️ Rate limit exceeded. Please wait a moment before trying again."
RATE_LIMITED_WAIT_TEXT = "⏱️ Rate limit exceeded. Please wait {seconds} seconds."
UNAVAILABLE_CALLBACK_TEXT = "🚫 Service temporarily unavailable"
UNAVAILABLE_TEXT = "🚫 Service temporarily unavailable. Please try again later."

# Delay used when a denial carries no retry hint
DEFAULT_DELAY_MS = 1000


class UpdateContext(Protocol):
    """What the gate needs from a bot update context."""

    chat_id: Optional[int]
    user_id: Optional[int]
    bot_id: Optional[int]
    is_callback_query: bool
    rate_limit: Optional[AggregatedDecision]

    async def reply(self, text: str) -> Any: ...

    async def answer_callback_query(self, text: str, show_alert: bool = False) -> Any: ...


def rate_limited_message(retry_after_ms: Optional[int]) -> str:
    """Human readable denial text, with the wait when it is known."""
    if retry_after_ms:
        return RATE_LIMITED_WAIT_TEXT.format(seconds=math.ceil(retry_after_ms / 1000))
    return RATE_LIMITED_TEXT


class _DelayMixin:
    settings: Settings

    def delay_seconds(self, decision: AggregatedDecision) -> float:
        """Bounded pause for a denied request, in seconds."""
        delay_ms = min(decision.retry_after_ms or DEFAULT_DELAY_MS, self.settings.rate_limit_queue_timeout)
        return delay_ms / 1000

    async def pause(self, decision: AggregatedDecision) -> None:
        # asyncio.sleep keeps the pause cancellable by the surrounding task
        await asyncio.sleep(self.delay_seconds(decision))


class RateLimitGate(_DelayMixin):
    """Middleware enforcing per-chat and global limits on inbound updates.

    Consequences of a denial depend on ``rate_limit_on_limit``:
    - reject: tell the user and stop
    - delay: pause for ``min(retry_after, queue_timeout)`` then continue
    - queue: not implemented, behaves as delay
    """

    def __init__(
        self,
        service: Optional[RateLimitService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._service = service
        self.settings = settings or (service.settings if service else default_settings)
        self._queue_warned = False

    @property
    def service(self) -> RateLimitService:
        if self._service is None:
            self._service = get_rate_limit_service()
        return self._service

    async def __call__(self, ctx: UpdateContext, call_next: NextHandler) -> Any:
        chat_id = getattr(ctx, "chat_id", None)
        user_id = getattr(ctx, "user_id", None)
        bot_id = getattr(ctx, "bot_id", None)

        decision = await self.service.check_inbound(chat_id, bot_id)
        ctx.rate_limit = decision

        if decision.kind is DecisionKind.SERVICE_UNAVAILABLE:
            await self._notify(ctx, UNAVAILABLE_TEXT, UNAVAILABLE_CALLBACK_TEXT)
            return None

        if decision.kind is DecisionKind.RATE_LIMITED:
            logger.warning(
                f"Rate limit exceeded for {decision.denied_scope}: chat={chat_id}, user={user_id}",
                extra=get_log_context(
                    chat_id=chat_id,
                    user_id=user_id,
                    scope=decision.denied_scope,
                    retry_after_ms=decision.retry_after_ms,
                ),
            )
            if self.on_limit == "reject":
                await self._notify(
                    ctx, rate_limited_message(decision.retry_after_ms), RATE_LIMITED_CALLBACK_TEXT
                )
                return None
            await self.pause(decision)

        return await call_next()

    @property
    def on_limit(self) -> str:
        on_limit = self.settings.rate_limit_on_limit
        if on_limit == "queue":
            if not self._queue_warned:
                logger.warning("rate_limit_on_limit=queue is not implemented, delaying instead")
                self._queue_warned = True
            return "delay"
        return on_limit

    @staticmethod
    async def _notify(ctx: UpdateContext, text: str, callback_text: str) -> None:
        if getattr(ctx, "is_callback_query", False):
            await ctx.answer_callback_query(text=callback_text, show_alert=True)
        else:
            await ctx.reply(text)


class AdminBypassGate:
    """Lets the configured admin users skip the inbound gate."""

    def __init__(self, admin_ids: Optional[Iterable[int]] = None, gate: Optional[RateLimitGate] = None) -> None:
        self.gate = gate or RateLimitGate()
        if admin_ids is None:
            admin_ids = self.gate.settings.rate_limit_admin_ids
        self.admin_ids = frozenset(admin_ids)

    async def __call__(self, ctx: UpdateContext, call_next: NextHandler) -> Any:
        user_id = getattr(ctx, "user_id", None)
        if user_id is not None and user_id in self.admin_ids:
            return await call_next()
        return await self.gate(ctx, call_next)


class OutboundRateLimiter(_DelayMixin):
    """Transformer that throttles outgoing message-sending calls.

    Only ``sendMessage``, ``editMessageText`` and ``editMessageCaption`` with
    a ``chat_id`` are checked, against the same per-chat bucket as inbound
    updates. A denied call is delayed, never dropped.
    """

    def __init__(
        self,
        service: Optional[RateLimitService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._service = service
        self.settings = settings or (service.settings if service else default_settings)

    @property
    def service(self) -> RateLimitService:
        if self._service is None:
            self._service = get_rate_limit_service()
        return self._service

    async def __call__(self, method: str, payload: Optional[dict], call_next: NextHandler) -> Any:
        chat_id = (payload or {}).get("chat_id")
        decision = await self.service.check_outbound(method, chat_id)

        if decision.kind is DecisionKind.SERVICE_UNAVAILABLE:
            raise ServiceUnavailableError()

        if decision.kind is DecisionKind.RATE_LIMITED:
            logger.warning(
                f"Outgoing message rate limited for chat {chat_id}",
                extra=get_log_context(
                    chat_id=chat_id, method=method, retry_after_ms=decision.retry_after_ms
                ),
            )
            await self.pause(decision)

        return await call_next()


def create_rate_limit_transformer(service: Optional[RateLimitService] = None) -> OutboundRateLimiter:
    """Build the outgoing-call transformer."""
    return OutboundRateLimiter(service=service)
