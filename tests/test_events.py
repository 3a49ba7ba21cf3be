"""Tests for EventTarget."""
import pytest

from pfp_session.vault.events import EventTarget


class TestEventTarget:
    """Listener registration and emission."""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self):
        target = EventTarget()
        seen = []

        async def async_listener(name):
            seen.append(("async", name))

        target.on("set", lambda name: seen.append(("sync", name)))
        target.on("set", async_listener)
        await target.emit("set", "site:a")
        assert seen == [("sync", "site:a"), ("async", "site:a")]

    @pytest.mark.asyncio
    async def test_off_and_once(self):
        target = EventTarget()
        seen = []

        def listener():
            seen.append("on")

        target.on("passwordCleared", listener)
        target.once("passwordCleared", lambda: seen.append("once"))
        await target.emit("passwordCleared")
        target.off("passwordCleared", listener)
        await target.emit("passwordCleared")
        assert seen == ["on", "once"]

    @pytest.mark.asyncio
    async def test_listener_errors_propagate(self):
        target = EventTarget()

        def broken():
            raise RuntimeError("listener failed")

        target.on("passwordChanged", broken)
        with pytest.raises(RuntimeError):
            await target.emit("passwordChanged")
