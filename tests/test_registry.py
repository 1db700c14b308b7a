"""Unit tests for the ConnectionRegistry (claims and presence)."""

# pylint: disable=redefined-outer-name

import pytest

from chathub.core.errors import InvalidUsername, UsernameTaken
from chathub.services.registry import ConnectionRegistry


@pytest.fixture
def registry() -> ConnectionRegistry:
    """Registry fixture"""
    return ConnectionRegistry()


def test_claim_trims_and_defaults_room(registry):
    """A successful claim trims the name and puts the user in general."""
    user, previous = registry.claim("c1", "  alice  ")

    assert user.username == "alice"
    assert user.id == "c1"
    assert user.current_room == "general"
    assert previous is None
    assert registry.lookup("c1") is user


@pytest.mark.parametrize("raw", [None, "", 42, ["alice"]])
def test_claim_requires_a_string(registry, raw):
    """Missing or non-string usernames are rejected."""
    with pytest.raises(InvalidUsername, match="Username is required."):
        registry.claim("c1", raw)


@pytest.mark.parametrize("raw", ["ab", "   ab   ", "x" * 21])
def test_claim_enforces_length(registry, raw):
    """Usernames must be 3-20 characters once trimmed."""
    with pytest.raises(InvalidUsername, match="between 3 and 20"):
        registry.claim("c1", raw)
    assert registry.lookup("c1") is None


def test_length_bounds_are_inclusive(registry):
    """3 and 20 characters are both accepted."""
    registry.claim("c1", "abc")
    registry.claim("c2", "y" * 20)
    assert len(registry) == 2


def test_case_insensitive_collision(registry):
    """'Alice' and 'alice' cannot be connected at the same time."""
    registry.claim("c1", "Alice")

    with pytest.raises(UsernameTaken, match="already taken"):
        registry.claim("c2", "alice")

    assert [user.username for user in registry.users()] == ["Alice"]


def test_reclaim_never_collides_with_itself(registry):
    """Bob -> Bob2 -> Bob2 on the same connection always succeeds."""
    registry.claim("c1", "Bob")
    _, previous = registry.claim("c1", "Bob2")
    assert previous.username == "Bob"

    user, previous = registry.claim("c1", "Bob2")

    assert user.username == "Bob2"
    assert previous.username == "Bob2"
    assert len(registry) == 1


def test_invalid_reclaim_keeps_previous_identity(registry):
    """Validation happens before the previous identity is dropped."""
    registry.claim("c1", "carol")

    with pytest.raises(InvalidUsername):
        registry.claim("c1", "no")

    assert registry.lookup("c1").username == "carol"


def test_failed_reclaim_leaves_connection_unclaimed(registry):
    """If the new name is taken, the old identity is already gone."""
    registry.claim("c1", "dave")
    registry.claim("c2", "erin")

    with pytest.raises(UsernameTaken):
        registry.claim("c1", "ERIN")

    assert registry.lookup("c1") is None
    assert not registry.is_taken("dave")


def test_release_is_idempotent(registry):
    """Releasing twice, or an unknown id, is a no-op."""
    registry.claim("c1", "frank")

    assert registry.release("c1").username == "frank"
    assert registry.release("c1") is None
    assert registry.release("missing") is None


def test_presence_list_is_unique(registry):
    """One entry per claimed connection, no case-insensitive duplicates."""
    for conn, name in [("c1", "Gina"), ("c2", "hank"), ("c3", "GINA"), ("c4", "Ivan")]:
        try:
            registry.claim(conn, name)
        except UsernameTaken:
            pass

    names = [user.username.lower() for user in registry.users()]
    assert sorted(names) == ["gina", "hank", "ivan"]
    assert len(names) == len(set(names))
