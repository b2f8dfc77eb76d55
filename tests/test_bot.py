from types import SimpleNamespace

from hesco.bot.middlewares import CorrelationIdMiddleware


class TestCorrelationIdMiddleware:
    async def test_context_reaches_handler(self):
        seen = {}

        async def handler(event, data):
            seen.update(data)
            return "handled"

        event = SimpleNamespace(from_user=SimpleNamespace(id=77))
        data = {"event_update": SimpleNamespace(update_id=5)}

        assert await CorrelationIdMiddleware()(handler, event, data) == "handled"
        assert seen["corr_id"] == "u5"
        assert seen["update_id"] == 5
        assert seen["user_id"] == 77

    async def test_event_without_sender(self):
        seen = {}

        async def handler(event, data):
            seen.update(data)

        await CorrelationIdMiddleware()(handler, SimpleNamespace(), {})
        assert "user_id" not in seen
        assert "corr_id" not in seen
