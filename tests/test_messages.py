"""Tests for the control message channel."""

import queue
from unittest.mock import Mock

import pytest

from hooklinecache.messages import ControlChannel, MessagePort
from hooklinecache.registry import CacheRegistry
from hooklinecache.tasks import BackgroundTasks

from .conftest import ok


@pytest.fixture
def skip_waiting() -> Mock:
    return Mock()


@pytest.fixture
def channel(registry: CacheRegistry, tasks: BackgroundTasks, skip_waiting: Mock) -> ControlChannel:
    return ControlChannel(registry, tasks, skip_waiting)


class TestControlChannel:
    """Tests for ControlChannel.handle."""

    def test_skip_waiting(self, channel: ControlChannel, skip_waiting: Mock) -> None:
        assert channel.handle({"type": "SKIP_WAITING"}) is True
        skip_waiting.assert_called_once_with()

    def test_cache_size_reply(self, channel: ControlChannel, registry: CacheRegistry) -> None:
        """1000 + 2000 stored bytes reply with cacheSize 3000."""
        registry.open("static").put("/index.html", ok(b"a" * 1000))
        registry.open("images").put("/hero.png", ok(b"b" * 2000))
        port = MessagePort()

        assert channel.handle({"type": "GET_CACHE_SIZE"}, [port]) is True

        assert port.receive(timeout=5) == {"cacheSize": 3000}

    def test_cache_size_of_empty_store(self, channel: ControlChannel) -> None:
        port = MessagePort()
        channel.handle({"type": "GET_CACHE_SIZE"}, [port])
        assert port.receive(timeout=5) == {"cacheSize": 0}

    def test_replies_on_first_port_only(self, channel: ControlChannel) -> None:
        first, second = MessagePort(), MessagePort()

        channel.handle({"type": "GET_CACHE_SIZE"}, [first, second])

        assert first.receive(timeout=5) == {"cacheSize": 0}
        with pytest.raises(queue.Empty):
            second.receive(timeout=0.05)

    def test_cache_size_without_port_is_ignored(self, channel: ControlChannel) -> None:
        assert channel.handle({"type": "GET_CACHE_SIZE"}) is False

    @pytest.mark.parametrize("data", [{"type": "RELOAD"}, {}, {"kind": "SKIP_WAITING"}, "SKIP_WAITING", None, 42])
    def test_malformed_messages_are_ignored(self, channel: ControlChannel, skip_waiting: Mock, data: object) -> None:
        assert channel.handle(data, [MessagePort()]) is False
        skip_waiting.assert_not_called()
