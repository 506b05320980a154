"""
Tests for leaderboard paging.
"""

from __future__ import annotations

from typing import Any, Callable, List

import pytest

from cache import RedisWrapper
from db.postgresql import PostgreSQLBackend
from db.protocols import Profile
from leaderboard import LeaderboardPage, LeaderboardPaginator, page_bounds, page_count
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
def paginator(ranks: RankStore) -> LeaderboardPaginator:
    return LeaderboardPaginator(ranks, page_size=5)


@pytest.fixture
def twelve_players(make_profile: Callable[..., Profile]) -> None:
    """p01 has 10 points, p12 has 120"""
    for n in range(1, 13):
        make_profile(f"p{n:02}", points=n * 10)


def get(paginator: LeaderboardPaginator, user_id: str, page: int) -> LeaderboardPage:
    result = paginator.get_page(user_id, page)
    assert isinstance(result, Ok)
    return result.value


def test_page_arithmetic() -> None:
    assert page_count(0, 5) == 0
    assert page_count(5, 5) == 1
    assert page_count(12, 5) == 3
    assert page_bounds(2, 12, 5) == (10, 2)
    assert page_bounds(3, 12, 5) == (15, 0)


@pytest.mark.usefixtures("twelve_players")
class TestPaging:
    def test_pages(self, paginator: LeaderboardPaginator) -> None:
        pages: List[LeaderboardPage] = [get(paginator, "p03", n) for n in range(3)]
        assert [len(p.entries) for p in pages] == [5, 5, 2]
        ranks = [e.rank for p in pages for e in p.entries]
        assert ranks == list(range(1, 13))
        assert pages[0].entries[0].user_id == "p12"
        assert pages[2].entries[-1].user_id == "p01"
        for p in pages:
            assert p.total_players == 12
            assert p.total_pages == 3
            # The own rank is the same whatever the page
            assert p.your_rank == 10
        assert [(p.has_previous_page, p.has_next_page) for p in pages] == [
            (False, True),
            (True, True),
            (True, False),
        ]

    def test_current_user_is_flagged(self, paginator: LeaderboardPaginator) -> None:
        page = get(paginator, "p03", 0)
        assert [e.user_id for e in page.entries if e.is_current_user] == []
        page = get(paginator, "p03", 1)
        flagged = [e for e in page.entries if e.is_current_user]
        assert [(e.user_id, e.rank, e.total_points) for e in flagged] == [
            ("p03", 10, 30)
        ]

    def test_page_past_the_end(self, paginator: LeaderboardPaginator) -> None:
        page = get(paginator, "p03", 7)
        assert page.entries == []
        assert page.current_page == 7
        assert not page.has_next_page

    def test_negative_page(self, paginator: LeaderboardPaginator) -> None:
        result = paginator.get_page("p03", -1)
        assert isinstance(result, Err)
        assert result.error.kind == ErrorKind.VALIDATION

    def test_anonymous_reader(self, paginator: LeaderboardPaginator) -> None:
        page = get(paginator, "", 0)
        assert page.your_rank is None
        assert not any(e.is_current_user for e in page.entries)

    def test_capped_leaderboard(self, ranks: RankStore) -> None:
        capped = LeaderboardPaginator(ranks, page_size=5, max_entries=7)
        first, second = get(capped, "p01", 0), get(capped, "p01", 1)
        assert (first.total_players, first.total_pages) == (7, 2)
        assert [e.rank for e in second.entries] == [6, 7]
        # The own rank is still the real one
        assert second.your_rank == 12

    def test_cache_outage(
        self, paginator: LeaderboardPaginator, monkeypatch: pytest.MonkeyPatch,
        redis_client: Any, redis_down: Callable[..., Any],
    ) -> None:
        for name in ("zrank", "zscore", "zcard", "zrevrange"):
            monkeypatch.setattr(redis_client, name, redis_down)
        page = get(paginator, "p12", 0)
        assert [e.user_id for e in page.entries] == ["p12", "p11", "p10", "p09", "p08"]
        assert page.your_rank == 1


def test_empty_leaderboard(paginator: LeaderboardPaginator) -> None:
    page = get(paginator, "nobody", 0)
    assert page.entries == []
    assert (page.total_players, page.total_pages) == (0, 0)
    assert page.your_rank is None
    assert not page.has_next_page and not page.has_previous_page


def test_invalid_page_size(ranks: RankStore) -> None:
    with pytest.raises(ValueError):
        LeaderboardPaginator(ranks, page_size=0)


def test_own_rank_agrees_with_page_after_lost_increment(
    ranks: RankStore, backend: PostgreSQLBackend, cache: RedisWrapper,
    make_profile: Callable[..., Profile], monkeypatch: pytest.MonkeyPatch,
    redis_client: Any, redis_down: Callable[..., Any],
) -> None:
    make_profile("alice", points=10)
    make_profile("bob", points=20)
    make_profile("carol", points=30)
    ranks.total_count()
    ranks.apply_delta("bob", 20)
    backend.commit()
    with monkeypatch.context() as m:
        m.setattr(redis_client, "zincrby", redis_down)
        ranks.publish()
    paginator = LeaderboardPaginator(
        RankStore(backend.profiles, cache, key=KEY, retries=0, backoff=0.0),
        page_size=5,
    )
    page = get(paginator, "carol", 0)
    assert [e.user_id for e in page.entries] == ["bob", "carol", "alice"]
    flagged = [e.rank for e in page.entries if e.is_current_user]
    assert flagged == [2]
    assert page.your_rank == 2
