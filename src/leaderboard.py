"""

    Leaderboard

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module slices the global ranking into fixed-size pages.
    Pages are computed per request and never cached. The requesting
    player's own rank is looked up independently of the page being
    shown, so it is the same on every page.

"""

from __future__ import annotations

from typing import List, Optional, Tuple

from dataclasses import dataclass

from config import LEADERBOARD_MAX_ENTRIES, LEADERBOARD_PAGE_SIZE
from rankstore import RankStore
from result import Ok, Result, validation_error


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    username: str
    level: int
    total_points: int
    is_current_user: bool = False


@dataclass(frozen=True)
class LeaderboardPage:
    entries: List[LeaderboardEntry]
    total_players: int
    total_pages: int
    current_page: int
    your_rank: Optional[int]
    has_next_page: bool
    has_previous_page: bool


def page_count(total: int, page_size: int = LEADERBOARD_PAGE_SIZE) -> int:
    """Number of pages needed for total entries"""
    if total <= 0:
        return 0
    return (total + page_size - 1) // page_size


def page_bounds(
    page: int, total: int, page_size: int = LEADERBOARD_PAGE_SIZE
) -> Tuple[int, int]:
    """The 0-based offset and the number of entries of a page"""
    offset = page * page_size
    return offset, max(0, min(page_size, total - offset))


class LeaderboardPaginator:
    """Read-only view of the rank store, one page at a time"""

    def __init__(
        self,
        ranks: RankStore,
        page_size: int = LEADERBOARD_PAGE_SIZE,
        max_entries: int = LEADERBOARD_MAX_ENTRIES,
    ) -> None:
        if page_size <= 0:
            raise ValueError(f"Invalid page size: {page_size}")
        self._ranks = ranks
        self._page_size = page_size
        # 0 means no cap
        self._max_entries = max_entries

    def get_page(self, user_id: Optional[str], page: int) -> Result[LeaderboardPage]:
        """Return page number page (0-based) of the leaderboard"""
        if page < 0:
            return validation_error(f"Invalid page: {page}", "get_leaderboard_page")
        ranks = self._ranks
        total = ranks.total_count()
        if self._max_entries > 0:
            total = min(total, self._max_entries)
        offset, count = page_bounds(page, total, self._page_size)
        entries: List[LeaderboardEntry] = []
        if count > 0:
            for i, entry in enumerate(ranks.top(offset, count)):
                entries.append(
                    LeaderboardEntry(
                        rank=offset + i + 1,
                        user_id=entry.user_id,
                        username=entry.username,
                        level=entry.level,
                        total_points=entry.total_points,
                        is_current_user=entry.user_id == user_id,
                    )
                )
        # Computed once per request, whatever the page, and after any
        # repair of the index made while reading the page
        your_rank = ranks.rank_of(user_id) if user_id else None
        total_pages = page_count(total, self._page_size)
        return Ok(
            LeaderboardPage(
                entries=entries,
                total_players=total,
                total_pages=total_pages,
                current_page=page,
                your_rank=your_rank,
                has_next_page=page + 1 < total_pages,
                has_previous_page=page > 0,
            )
        )
