"""Unit tests for username generation and unique allocation."""
import itertools
import random
from types import SimpleNamespace

import pytest

from whmcs_authentik.core import usernames
from conftest import TEST_TOKEN, TEST_URL, HtmlResponse
from whmcs_authentik.core.authentik import AuthentikAPIError, AuthentikClient, NetworkError, UserService
from whmcs_authentik.core.usernames import (
    MAX_ATTEMPTS,
    AllocationExhaustedError,
    allocate_unique_username,
    generate_username,
    is_valid_username,
)


class FakeUsers:
    """UserService stand-in answering username_exists from a set."""

    def __init__(self, taken=(), errors=()):
        self.taken = set(taken)
        self.errors = set(errors)
        self.lookups = []

    def username_exists(self, candidate):
        self.lookups.append(candidate)
        if candidate in self.errors:
            raise AuthentikAPIError(500, "boom", "/core/users/")
        return candidate in self.taken


def sequence(*names):
    it = iter(names)
    return lambda: next(it)


# ============================================================================
# generate_username
# ============================================================================

def test_generate_username_format():
    for _ in range(200):
        candidate = generate_username()
        assert is_valid_username(candidate)
        assert candidate == candidate.lower()
        digits = candidate.lstrip("abcdefghijklmnopqrstuvwxyz")
        assert 1000 <= int(digits) <= 99999


def test_generate_username_draws_from_secrets(monkeypatch):
    fake_secrets = SimpleNamespace(
        choice=lambda seq: seq[0],
        randbelow=lambda n: n - 1,
    )
    monkeypatch.setattr(usernames, "secrets", fake_secrets)
    assert generate_username() == "amberair99999"


def test_generate_username_lowest_number(monkeypatch):
    fake_secrets = SimpleNamespace(choice=lambda seq: seq[-1], randbelow=lambda n: 0)
    monkeypatch.setattr(usernames, "secrets", fake_secrets)
    assert generate_username() == f"{usernames.ADJECTIVES[-1]}{usernames.NOUNS[-1]}1000"


@pytest.mark.parametrize("candidate,expected", [
    ("swiftnode4821", True),
    ("bluebyte12345", True),
    ("bluebyte123", False),
    ("bluebyte123456", False),
    ("Bluebyte1234", False),
    ("blue-byte1234", False),
    ("", False),
])
def test_is_valid_username(candidate, expected):
    assert is_valid_username(candidate) is expected


# ============================================================================
# allocate_unique_username
# ============================================================================

def test_allocate_returns_first_free_candidate():
    users = FakeUsers(taken={"swiftnode4821"})
    result = allocate_unique_username(users, generator=sequence("swiftnode4821", "calmcore1234"))
    assert result == "calmcore1234"
    assert users.lookups == ["swiftnode4821", "calmcore1234"]


def test_allocate_skips_repeated_candidates_without_lookup():
    users = FakeUsers(taken={"swiftnode4821"})
    result = allocate_unique_username(
        users,
        generator=sequence("swiftnode4821", "swiftnode4821", "swiftnode4821", "calmcore1234"),
    )
    assert result == "calmcore1234"
    assert users.lookups == ["swiftnode4821", "calmcore1234"]


def test_allocate_exhausts_after_max_attempts():
    counter = itertools.count()
    users = FakeUsers()
    users.username_exists = lambda candidate: users.lookups.append(candidate) or True

    with pytest.raises(AllocationExhaustedError) as excinfo:
        allocate_unique_username(users, generator=lambda: f"taken{next(counter):05d}")

    assert excinfo.value.attempts == MAX_ATTEMPTS
    assert len(users.lookups) == MAX_ATTEMPTS
    assert "50 attempts" in str(excinfo.value)


def test_allocate_repeats_consume_attempts():
    users = FakeUsers(taken={"swiftnode4821"})
    with pytest.raises(AllocationExhaustedError):
        allocate_unique_username(users, max_attempts=5, generator=lambda: "swiftnode4821")
    assert users.lookups == ["swiftnode4821"]


def test_allocate_counts_lookup_errors_as_attempts():
    users = FakeUsers(errors={"swiftnode4821"})
    result = allocate_unique_username(users, generator=sequence("swiftnode4821", "calmcore1234"))
    assert result == "calmcore1234"


def test_allocate_persistent_lookup_errors_are_bounded():
    counter = itertools.count()
    calls = []

    class BrokenUsers:
        def username_exists(self, candidate):
            calls.append(candidate)
            raise NetworkError("connection refused", "https://auth.example.com/api/v3/core/users/")

    with pytest.raises(AllocationExhaustedError):
        allocate_unique_username(BrokenUsers(), max_attempts=7, generator=lambda: f"user{next(counter):04d}")
    assert len(calls) == 7


def test_allocate_lookup_error_is_audited(audit_events):
    users = FakeUsers(errors={"swiftnode4821"})
    allocate_unique_username(users, generator=sequence("swiftnode4821", "calmcore1234"))
    actions = [event["action"] for event in audit_events()]
    assert "GenerateUsername_Error" in actions
    assert actions[-1] == "GenerateUsername_Success"


@pytest.mark.parametrize("seed", range(20))
def test_allocate_never_returns_taken_username(seed):
    rng = random.Random(seed)
    pool = [f"name{i:04d}" for i in range(rng.randint(1, 30))]
    taken = {name for name in pool if rng.random() < 0.7}
    users = FakeUsers(taken=taken)

    try:
        result = allocate_unique_username(users, generator=lambda: rng.choice(pool))
    except AllocationExhaustedError:
        return

    assert result not in taken
    assert result not in users.taken


def test_noun_list_keeps_weighted_repeats():
    assert len(usernames.NOUNS) == 100
    assert usernames.NOUNS.count("host") == 2
    assert usernames.NOUNS.count("zone") == 2


def test_allocate_skips_malformed_candidates_without_lookup():
    users = FakeUsers()
    result = allocate_unique_username(users, generator=sequence("Bad Name", "node12", "calmcore1234"))
    assert result == "calmcore1234"
    assert users.lookups == ["calmcore1234"]


# ============================================================================
# allocate_unique_username against the HTTP layer
# ============================================================================

def test_allocate_counts_unreadable_lookup_as_attempt(fake_authentik):
    fake_authentik.add_raw("GET", "/core/users/", HtmlResponse())
    users = UserService(AuthentikClient(TEST_URL, TEST_TOKEN))

    with pytest.raises(AllocationExhaustedError) as excinfo:
        allocate_unique_username(
            users, max_attempts=3, generator=sequence("amberair1000", "amberair1001", "amberair1002"),
        )

    assert excinfo.value.attempts == 3
    assert len(fake_authentik.calls_for("GET", "/core/users/")) == 3


def test_allocate_recovers_after_unreadable_lookup(fake_authentik):
    fake_authentik.add_raw("GET", "/core/users/", HtmlResponse())
    fake_authentik.add("GET", "/core/users/", {"results": []})
    users = UserService(AuthentikClient(TEST_URL, TEST_TOKEN))

    result = allocate_unique_username(users, generator=sequence("amberair1000", "calmcore1234"))

    assert result == "calmcore1234"
    assert len(fake_authentik.calls_for("GET", "/core/users/")) == 2
