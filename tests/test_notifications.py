import pytest

from core.models import DomainEvent
from services.notifications import EventDispatcher, NotificationSink, SoundPlayer
from utils.decorators import retry_on_exception

class BrokenSink:
    def handle(self, event):
        raise RuntimeError("устройство недоступно")

class TestEventDispatcher:
    def test_sink_failure_does_not_stop_delivery(self):
        sink = NotificationSink()
        dispatcher = EventDispatcher([BrokenSink(), sink])
        dispatcher.dispatch([DomainEvent("level_up", "LEVEL UP", "Уровень 2", "level_up")])

        assert dispatcher.failed_deliveries == 1
        assert [e.kind for e in sink.delivered] == ["level_up"]

    def test_sound_player(self):
        player = SoundPlayer()
        dispatcher = EventDispatcher()
        dispatcher.add_sink(player)
        dispatcher.dispatch([
            DomainEvent("a", "a", "a", "success"),
            DomainEvent("b", "b", "b", "explosion"),
            DomainEvent("c", "c", "c", None),
        ])
        assert list(player.played) == ["success"]

    def test_muted_player(self):
        player = SoundPlayer(enabled=False)
        player.handle(DomainEvent("a", "a", "a", "click"))
        assert not player.played

class TestRetryOnException:
    async def test_recovers(self):
        calls = []

        @retry_on_exception(retries=2, delay=0.001)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("нет связи")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    async def test_gives_up(self):
        calls = []

        @retry_on_exception(retries=1, delay=0.001, exceptions=(ConnectionError,))
        async def down():
            calls.append(1)
            raise ConnectionError("нет связи")

        with pytest.raises(ConnectionError):
            await down()
        assert len(calls) == 2

    async def test_other_errors_not_retried(self):
        calls = []

        @retry_on_exception(retries=3, delay=0.001, exceptions=(ConnectionError,))
        async def broken():
            calls.append(1)
            raise KeyError("x")

        with pytest.raises(KeyError):
            await broken()
        assert len(calls) == 1
