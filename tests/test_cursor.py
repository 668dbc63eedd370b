from dar.state.cursor import CursorTracker
from dar.state.memory_store import MemoryCursorStore

from fakes import FakeFeed


def test_current_or_init_requests_start_cursor_once() -> None:
    feed = FakeFeed(start_cursor="s1")
    tracker = CursorTracker(feed=feed, store=MemoryCursorStore())

    assert tracker.current() is None
    assert tracker.current_or_init() == "s1"
    assert tracker.current_or_init() == "s1"
    assert feed.start_calls == 1


def test_advance_overwrites_unconditionally() -> None:
    feed = FakeFeed()
    store = MemoryCursorStore()
    store.set_cursor("100")
    tracker = CursorTracker(feed=feed, store=store)

    tracker.advance_to("5")
    assert tracker.current() == "5"
    assert feed.start_calls == 0


def test_reset_reinitializes() -> None:
    tracker = CursorTracker(feed=FakeFeed(), store=MemoryCursorStore())
    tracker.advance_to("7")
    tracker.reset("1")
    assert tracker.current_or_init() == "1"


def test_trackers_do_not_share_state() -> None:
    feed = FakeFeed(start_cursor="s1")
    t1 = CursorTracker(feed=feed, store=MemoryCursorStore())
    t2 = CursorTracker(feed=feed, store=MemoryCursorStore())

    t1.advance_to("x")
    assert t2.current() is None
