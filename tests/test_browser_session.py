import asyncio

import pytest

from screenshot_service.browser import BrowserSession, LaunchOptions, SessionState
from screenshot_service.errors import RendererUnavailable

pytestmark = pytest.mark.asyncio


async def test_lazy_launch_and_reuse(session, launcher):
    assert session.state is SessionState.UNINITIALIZED
    first = await session.ensure_ready()
    second = await session.ensure_ready()
    assert first is second
    assert launcher.launches == 1
    assert session.launch_count == 1
    assert session.state is SessionState.READY


async def test_concurrent_callers_share_one_launch(session, launcher):
    launcher.delay = 0.01
    browsers = await asyncio.gather(*(session.ensure_ready() for _ in range(10)))
    assert launcher.launches == 1
    assert session.launch_count == 1
    assert all(b is browsers[0] for b in browsers)


async def test_launch_failure_leaves_session_retryable(session, launcher):
    launcher.fail = True
    with pytest.raises(RendererUnavailable):
        await session.ensure_ready()
    assert session.state is SessionState.UNINITIALIZED

    launcher.fail = False
    browser = await session.ensure_ready()
    assert browser.is_connected()
    assert session.state is SessionState.READY


async def test_disconnect_event_forces_relaunch(session, launcher):
    first = await session.ensure_ready()
    first.disconnect()
    assert session.state is SessionState.DISCONNECTED

    second = await session.ensure_ready()
    assert second is not first
    assert launcher.launches == 2
    assert session.launch_count == 2


async def test_relaunch_failure_after_disconnect_stays_disconnected(session, launcher):
    browser = await session.ensure_ready()
    browser.disconnect()
    launcher.fail = True
    with pytest.raises(RendererUnavailable):
        await session.ensure_ready()
    assert session.state is SessionState.DISCONNECTED


async def test_missed_disconnect_is_detected(session, launcher):
    first = await session.ensure_ready()
    first.connected = False
    second = await session.ensure_ready()
    assert second is not first
    assert launcher.launches == 2


async def test_stale_disconnect_does_not_drop_new_browser(session, launcher):
    old = await session.ensure_ready()
    session.invalidate(old)
    new = await session.ensure_ready()
    session.invalidate(old)
    assert session.state is SessionState.READY
    assert await session.ensure_ready() is new


async def test_non_persistent_lease_closes_browser(launcher):
    session = BrowserSession(launcher, LaunchOptions(), persistent=False)
    async with session.lease() as browser:
        assert not browser.closed
    assert browser.closed
    assert session.state is SessionState.DISCONNECTED


async def test_non_persistent_waits_for_last_borrower(launcher):
    session = BrowserSession(launcher, LaunchOptions(), persistent=False)
    async with session.lease() as outer:
        async with session.lease() as inner:
            assert inner is outer
        assert not outer.closed
    assert outer.closed
    assert launcher.launches == 1


async def test_persistent_lease_keeps_browser(session):
    async with session.lease() as browser:
        pass
    assert not browser.closed
    assert session.state is SessionState.READY


async def test_close_shuts_down_browser_and_driver(session, launcher):
    browser = await session.ensure_ready()
    await session.close()
    assert browser.closed
    assert launcher.stopped
