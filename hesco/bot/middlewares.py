from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import Message, TelegramObject, Update

log = logging.getLogger(__name__)


class CorrelationIdMiddleware(BaseMiddleware):
    """Puts `corr_id` and the sender's `user_id` into handler data as log context."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        ctx: dict[str, Any] = {}
        update: Update | None = data.get("event_update")
        if update:
            ctx["corr_id"] = f"u{update.update_id}"
            ctx["update_id"] = update.update_id
        sender = getattr(event, "from_user", None)
        if sender is not None:
            ctx["user_id"] = sender.id
        data.update(ctx)
        log.debug("update_received", extra=ctx)
        return await handler(event, data)


class RateLimitMiddleware(BaseMiddleware):
    """Drops repeats of the same command from the same user within the interval."""

    def __init__(self, min_interval_sec: float = 0.4):
        self.min_interval_sec = min_interval_sec
        self._last: dict[tuple[int, str], float] = {}

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        if isinstance(event, Message) and event.text and event.from_user:
            key = (event.from_user.id, event.text)
            now = time.monotonic()
            last = self._last.get(key)
            if last and (now - last) < self.min_interval_sec:
                log.info("rate_limited", extra={"tg_id": event.from_user.id})
                return None
            self._last[key] = now
        return await handler(event, data)
