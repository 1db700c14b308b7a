"""
Unit tests for the RoomStore.
Tests the bounded logs, membership, typing state and history queries.
"""

# pylint: disable=redefined-outer-name

from datetime import datetime, timedelta, timezone

import pytest

from chathub.core.errors import UnknownTarget
from chathub.core.message import Message
from chathub.services.rooms import RoomStore

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_message(index: int, room: str = "general", text: str = "") -> Message:
    """Message number `index`, one second apart."""
    return Message(
        id=index,
        sender_id="c1",
        sender="alice",
        room=room,
        message=text or f"message {index}",
        timestamp=START + timedelta(seconds=index),
    )


@pytest.fixture
def rooms() -> RoomStore:
    """Store with the default catalog."""
    return RoomStore()


def test_catalog_is_fixed(rooms):
    """Ad hoc rooms work but are not listed."""
    rooms.append("secret", make_message(1, room="secret"))

    assert rooms.catalog() == ["general", "random", "tech", "gaming"]
    assert rooms.has_room("secret")


def test_log_created_lazily(rooms):
    """Unknown rooms have an empty history until first referenced."""
    assert not rooms.has_room("tech")
    assert rooms.messages("tech") == []

    rooms.ensure_room("tech")
    assert rooms.has_room("tech")


def test_log_never_exceeds_cap(rooms):
    """Appending the 101st message evicts exactly the oldest one."""
    for i in range(1, 101):
        rooms.append("general", make_message(i))
    assert len(rooms.messages("general")) == 100

    rooms.append("general", make_message(101))

    ids = [msg.id for msg in rooms.messages("general")]
    assert len(ids) == 100
    assert ids[0] == 2
    assert ids[-1] == 101


def test_custom_history_limit():
    """The cap comes from the constructor."""
    store = RoomStore(history_limit=3)
    for i in range(1, 6):
        store.append("general", make_message(i))

    assert [msg.id for msg in store.messages("general")] == [3, 4, 5]


def test_get_message(rooms):
    """Lookups raise UnknownTarget for unknown rooms or ids."""
    rooms.append("general", make_message(7))

    assert rooms.get_message("general", 7).id == 7
    with pytest.raises(UnknownTarget):
        rooms.get_message("general", 8)
    with pytest.raises(UnknownTarget):
        rooms.get_message("random", 7)
    with pytest.raises(UnknownTarget):
        rooms.get_message(None, 7)


def test_membership(rooms):
    """Members are tracked per room and dropped on disconnect."""
    rooms.add_member("general", "c1")
    rooms.add_member("general", "c2")
    rooms.add_member("tech", "c1")

    assert rooms.members("general") == {"c1", "c2"}
    assert rooms.members("tech") == {"c1"}

    rooms.remove_member("general", "c2")
    rooms.remove_member("general", "ghost")
    assert rooms.members("general") == {"c1"}

    rooms.drop_connection("c1")
    assert rooms.members("general") == set()
    assert rooms.members("tech") == set()


def test_typing_users_per_room(rooms):
    """The typer list only contains users typing in that room."""
    rooms.set_typing("c1", "alice", "general")
    rooms.set_typing("c2", "bob", "tech")
    rooms.set_typing("c3", "carol", "general")

    assert rooms.typing_users("general") == ["alice", "carol"]

    rooms.clear_typing("c1")
    rooms.drop_connection("c3")
    assert rooms.typing_users("general") == []
    assert rooms.typing_users("tech") == ["bob"]


def test_pagination_pages_are_disjoint_and_older(rooms):
    """Each page is strictly older than the previous one, until hasMore is False."""
    for i in range(1, 26):
        rooms.append("general", make_message(i))

    first, has_more = rooms.page("general", limit=10)
    assert [m.id for m in first] == list(range(16, 26))
    assert has_more is True

    second, has_more = rooms.page("general", before=first[0].timestamp, limit=10)
    assert [m.id for m in second] == list(range(6, 16))
    assert has_more is True
    assert max(m.timestamp for m in second) < min(m.timestamp for m in first)

    third, has_more = rooms.page("general", before=second[0].timestamp, limit=10)
    assert [m.id for m in third] == list(range(1, 6))
    assert has_more is False


def test_pagination_exact_fit(rooms):
    """hasMore is False when the page holds the last older message."""
    for i in range(1, 6):
        rooms.append("general", make_message(i))

    batch, has_more = rooms.page("general", limit=5)

    assert len(batch) == 5
    assert has_more is False


def test_pagination_naive_cursor_is_utc(rooms):
    """A cursor without timezone is read as UTC."""
    for i in range(1, 4):
        rooms.append("general", make_message(i))

    naive = (START + timedelta(seconds=3)).replace(tzinfo=None)
    batch, _ = rooms.page("general", before=naive, limit=10)

    assert [m.id for m in batch] == [1, 2]


def test_pagination_unknown_room(rooms):
    """Unknown rooms yield an empty page."""
    assert rooms.page("nowhere", limit=10) == ([], False)


def test_search_is_case_insensitive(rooms):
    """Substring match ignores case, empty queries match nothing."""
    rooms.append("general", make_message(1, text="Hello World"))
    rooms.append("general", make_message(2, text="goodbye"))
    rooms.append("general", make_message(3, text="say HELLO"))

    assert [m.id for m in rooms.search("general", "hello")] == [1, 3]
    assert rooms.search("general", "") == []
    assert rooms.search("random", "hello") == []


def test_search_keeps_most_recent_matches(rooms):
    """Only the most recent `limit` matches are returned, chronologically."""
    for i in range(1, 11):
        rooms.append("general", make_message(i, text=f"match {i}"))

    assert [m.id for m in rooms.search("general", "match", limit=3)] == [8, 9, 10]
