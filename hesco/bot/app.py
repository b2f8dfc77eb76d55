import logging

from aiogram import Bot, Dispatcher

from hesco.bot.handlers.admin import router as admin_router
from hesco.bot.handlers.customer import router as customer_router
from hesco.bot.middlewares import CorrelationIdMiddleware, RateLimitMiddleware
from hesco.core.config import settings

log = logging.getLogger(__name__)


def build_dispatcher() -> Dispatcher:
    dp = Dispatcher()
    dp.message.middleware(CorrelationIdMiddleware())
    dp.message.middleware(RateLimitMiddleware(min_interval_sec=0.4))

    dp.include_router(admin_router)
    dp.include_router(customer_router)
    return dp


async def run_bot() -> None:
    bot = Bot(token=settings.bot_token)
    dp = build_dispatcher()

    log.info("bot_start")
    await dp.start_polling(bot)
