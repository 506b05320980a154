"""
Tests for the rank store: the Redis rank index over the profile table.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from cache import RedisWrapper
from db.postgresql import PostgreSQLBackend
from db.protocols import Profile
from rankstore import RankStore
from result import Err, ErrorKind, Ok


KEY = "leaderboard:test"


@pytest.fixture
def ranks(backend: PostgreSQLBackend, cache: RedisWrapper) -> RankStore:
    return RankStore(
        backend.profiles, cache, key=KEY, retries=0, backoff=0.0,
        rollback=backend.rollback,
    )


@pytest.fixture
def three_players(make_profile: Callable[..., Profile]) -> None:
    make_profile("a", points=10)
    make_profile("b", points=30)
    make_profile("c", points=20)


def take_cache_down(
    monkeypatch: pytest.MonkeyPatch, redis_client: Any, redis_down: Callable[..., Any]
) -> None:
    for name in (
        "zincrby", "zrank", "zscore", "zcard", "zrevrange", "zadd", "zrem",
        "exists", "delete",
    ):
        monkeypatch.setattr(redis_client, name, redis_down)


@pytest.mark.usefixtures("three_players")
class TestRanks:
    def test_ranks_are_descending_by_points(self, ranks: RankStore) -> None:
        assert ranks.rank_of("b") == 1
        assert ranks.rank_of("c") == 2
        assert ranks.rank_of("a") == 3
        assert ranks.rank_of("nobody") is None
        assert ranks.total_count() == 3

    def test_top(self, ranks: RankStore) -> None:
        top = ranks.top(0, 2)
        assert [(e.user_id, e.total_points) for e in top] == [("b", 30), ("c", 20)]
        assert [e.user_id for e in ranks.top(2, 5)] == ["a"]
        assert ranks.top(3, 5) == []
        assert ranks.top(0, 0) == []

    def test_index_is_built_lazily(self, ranks: RankStore, cache: RedisWrapper) -> None:
        assert cache.cardinality(KEY) == 0
        ranks.total_count()
        assert cache.cardinality(KEY) == 3
        assert cache.score(KEY, "b") == 30.0

    def test_rebuild(self, ranks: RankStore, cache: RedisWrapper) -> None:
        cache.set_score(KEY, "ghost", 1000)
        assert ranks.rebuild() == Ok(3)
        assert cache.score(KEY, "ghost") is None


def test_ties_are_broken_by_user_id(
    ranks: RankStore, make_profile: Callable[..., Profile], monkeypatch: pytest.MonkeyPatch,
    redis_client: Any, redis_down: Callable[..., Any],
) -> None:
    """The index and the database order equal scores the same way"""
    make_profile("x", points=10)
    make_profile("y", points=10)
    assert (ranks.rank_of("y"), ranks.rank_of("x")) == (1, 2)
    assert [e.user_id for e in ranks.top(0, 2)] == ["y", "x"]
    take_cache_down(monkeypatch, redis_client, redis_down)
    assert (ranks.rank_of("y"), ranks.rank_of("x")) == (1, 2)
    assert [e.user_id for e in ranks.top(0, 2)] == ["y", "x"]


def test_index_and_database_agree_on_mixed_case_ties(
    ranks: RankStore, backend: PostgreSQLBackend,
    make_profile: Callable[..., Profile],
) -> None:
    make_profile("Zed", points=10)
    make_profile("amy", points=10)
    assert [e.user_id for e in ranks.top(0, 2)] == ["amy", "Zed"]
    for user_id in ("amy", "Zed"):
        assert ranks.rank_of(user_id) == backend.profiles.rank_of(user_id)


@pytest.mark.usefixtures("three_players")
class TestWrites:
    def test_publish_after_commit(
        self, ranks: RankStore, backend: PostgreSQLBackend, cache: RedisWrapper
    ) -> None:
        ranks.total_count()
        assert ranks.apply_delta("a", 25, 25) == Ok(None)
        backend.commit()
        # Not visible in the index until published
        assert cache.score(KEY, "a") == 10.0
        ranks.publish()
        assert cache.score(KEY, "a") == 35.0
        assert ranks.rank_of("a") == 1

    def test_discard_after_rollback(
        self, ranks: RankStore, backend: PostgreSQLBackend, cache: RedisWrapper
    ) -> None:
        ranks.total_count()
        ranks.apply_delta("a", 25)
        backend.rollback()
        ranks.discard()
        ranks.publish()
        assert cache.score(KEY, "a") == 10.0
        assert ranks.rank_of("a") == 3

    def test_delta_for_missing_profile(self, ranks: RankStore) -> None:
        result = ranks.apply_delta("nobody", 5)
        assert isinstance(result, Err)
        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_spend(self, ranks: RankStore, backend: PostgreSQLBackend) -> None:
        assert ranks.spend("a", 4) == Ok(True)
        assert ranks.spend("a", 7) == Ok(False)
        backend.commit()
        ranks.publish()
        assert [e.total_points for e in ranks.top(2, 1)] == [6]

    def test_sync_and_remove_user(self, ranks: RankStore, cache: RedisWrapper) -> None:
        assert ranks.remove_user("a") == Ok(None)
        assert cache.score(KEY, "a") is None
        assert ranks.sync_user("a") == Ok(None)
        assert cache.score(KEY, "a") == 10.0
        cache.set_score(KEY, "ghost", 5)
        ranks.sync_user("ghost")
        assert cache.score(KEY, "ghost") is None

    def test_publish_survives_cache_outage(
        self, ranks: RankStore, backend: PostgreSQLBackend, cache: RedisWrapper,
        monkeypatch: pytest.MonkeyPatch, redis_client: Any,
        redis_down: Callable[..., Any],
    ) -> None:
        ranks.total_count()
        ranks.apply_delta("a", 25)
        backend.commit()
        with monkeypatch.context() as m:
            take_cache_down(m, redis_client, redis_down)
            ranks.publish()
        # The next read rebuilds the index from the database
        assert ranks.rank_of("a") == 1
        assert cache.score(KEY, "a") == 35.0

    def test_lost_increment_invalidates_the_whole_index(
        self, ranks: RankStore, backend: PostgreSQLBackend, cache: RedisWrapper,
        monkeypatch: pytest.MonkeyPatch, redis_client: Any,
        redis_down: Callable[..., Any],
    ) -> None:
        """Other players' ranks are not computed from a stale entry"""
        ranks.total_count()
        ranks.apply_delta("a", 25)
        backend.commit()
        with monkeypatch.context() as m:
            m.setattr(redis_client, "zincrby", redis_down)
            ranks.publish()
        assert cache.score(KEY, "a") == 10.0
        # As seen by another request
        other = RankStore(backend.profiles, cache, key=KEY, retries=0, backoff=0.0)
        assert other.rank_of("b") == 2
        assert [e.user_id for e in other.top(0, 3)] == ["a", "b", "c"]
        assert cache.score(KEY, "a") == 35.0


@pytest.mark.usefixtures("three_players")
class TestRepair:
    def test_valid_index_is_served_without_rebuilding(
        self, ranks: RankStore, cache: RedisWrapper, redis_client: Any
    ) -> None:
        ranks.total_count()
        assert 0 < redis_client.ttl(f"{KEY}:valid") <= 600
        cache.set_score(KEY, "a", 999)
        assert ranks.rank_of("a") == 1
        assert ranks.total_count() == 3

    def test_invalidate(self, ranks: RankStore, cache: RedisWrapper) -> None:
        ranks.total_count()
        cache.set_score(KEY, "a", 999)
        ranks.invalidate()
        assert ranks.rank_of("a") == 3
        assert cache.score(KEY, "a") == 10.0

    def test_expired_index_is_rebuilt(
        self, ranks: RankStore, cache: RedisWrapper
    ) -> None:
        ranks.total_count()
        cache.remove(KEY, "b")
        cache.delete(f"{KEY}:valid")
        assert ranks.rank_of("b") == 1
        assert ranks.total_count() == 3

    def test_stale_score_is_repaired_on_top_read(
        self, ranks: RankStore, cache: RedisWrapper
    ) -> None:
        ranks.total_count()
        cache.set_score(KEY, "b", 1)
        assert [e.user_id for e in ranks.top(0, 3)] == ["b", "c", "a"]
        assert cache.score(KEY, "b") == 30.0

    def test_missing_member_is_repaired(
        self, ranks: RankStore, cache: RedisWrapper
    ) -> None:
        ranks.total_count()
        cache.remove(KEY, "a")
        assert ranks.rank_of("a") == 3
        assert cache.cardinality(KEY) == 3

    def test_new_profile_is_ranked(
        self, ranks: RankStore, make_profile: Callable[..., Profile]
    ) -> None:
        ranks.total_count()
        make_profile("d", points=25)
        assert ranks.rank_of("d") == 2
        assert ranks.total_count() == 4


@pytest.mark.usefixtures("three_players")
class TestOutages:
    def test_cache_down_falls_back_to_database(
        self, ranks: RankStore, monkeypatch: pytest.MonkeyPatch, redis_client: Any,
        redis_down: Callable[..., Any],
    ) -> None:
        take_cache_down(monkeypatch, redis_client, redis_down)
        assert ranks.total_count() == 3
        assert ranks.rank_of("c") == 2
        assert [e.user_id for e in ranks.top(0, 3)] == ["b", "c", "a"]

    def test_both_down_returns_neutral_defaults(
        self, ranks: RankStore, backend: PostgreSQLBackend,
        monkeypatch: pytest.MonkeyPatch, redis_client: Any,
        redis_down: Callable[..., Any], db_down: Callable[..., Any],
    ) -> None:
        take_cache_down(monkeypatch, redis_client, redis_down)
        for name in ("get", "get_multi", "count", "list_by_points", "rank_of"):
            monkeypatch.setattr(backend.profiles, name, db_down)
        assert ranks.total_count() == 0
        assert ranks.rank_of("a") is None
        assert ranks.top(0, 5) == []

    def test_no_cache_configured(self, backend: PostgreSQLBackend) -> None:
        ranks = RankStore(backend.profiles, None, key=KEY, retries=0, backoff=0.0)
        assert ranks.rank_of("b") == 1
        assert ranks.rebuild() == Ok(0)
        ranks.apply_delta("a", 1)
        ranks.publish()
