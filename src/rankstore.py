"""

    Rank store

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module maintains the global ranking of players by lifetime
    points. The authoritative totals live in the profile table; a Redis
    sorted set (member = user id, score = total points) serves as a fast,
    rebuildable rank index on top of it.

    Writes go to the database first, in a single conditional UPDATE.
    The matching ZINCRBY is queued and only sent by publish(), after the
    surrounding transaction has committed, so that a rolled-back
    transaction never leaves a phantom increment in the index.

    Reads prefer the index, but only while it is known to be complete:
    a rebuild sets a marker key next to the sorted set, with a lifetime
    of RANK_INDEX_TTL seconds. An increment that cannot be published
    deletes the marker, so the next read, by any process, rebuilds the
    index from the database instead of serving ranks that disagree with
    it. If the marker cannot be deleted either, the lifetime bounds how
    long the index may stay out of date.

    If Redis is unreachable, reads are computed from the database; if
    both are down, they degrade to neutral defaults instead of failing.

    Ranks are 1-based and descending. Players with equal points are
    ordered by user id, descending, in both the index and the database
    fallback: Redis orders equal scores by member, and ZREVRANGE lists
    them in reverse, so the descending rank of a member with ascending
    rank r in a set of n members is n - r.

"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, TypeVar

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from cache import CacheUnavailableError, RedisWrapper
from config import (
    LEADERBOARD_KEY,
    RANK_INDEX_TTL,
    STORAGE_RETRIES,
    STORAGE_RETRY_BACKOFF,
)
from db.protocols import ProfileRepositoryProtocol
from result import (
    Ok,
    Result,
    not_found_error,
    storage_error,
    unwrap_or,
    with_retry,
)


T = TypeVar("T")


@dataclass(frozen=True)
class RankEntry:
    """A player's position on the leaderboard. The score is
    always the lifetime total."""

    user_id: str
    username: str
    level: int
    total_points: int


class RankStore:
    """Rank index over the profile table, backed by a Redis sorted set"""

    def __init__(
        self,
        profiles: ProfileRepositoryProtocol,
        cache: Optional[RedisWrapper],
        *,
        key: str = LEADERBOARD_KEY,
        retries: int = STORAGE_RETRIES,
        backoff: float = STORAGE_RETRY_BACKOFF,
        rollback: Optional[Callable[[], None]] = None,
        ttl: int = RANK_INDEX_TTL,
    ) -> None:
        self._profiles = profiles
        self._cache = cache
        self._key = key
        # Present while the index is complete and up to date
        self._marker = f"{key}:valid"
        self._ttl = ttl
        # Set when this instance failed to publish and could not
        # be sure that the marker was deleted
        self._stale = False
        self._retries = retries
        self._backoff = backoff
        # Clears a failed database transaction before a read is retried
        self._rollback = rollback
        # Point deltas waiting for the transaction to commit
        self._pending: Dict[str, int] = defaultdict(int)

    # Writes

    def apply_delta(
        self, user_id: str, points: int, experience: int = 0, **counters: int
    ) -> Result[None]:
        """Add points (and experience and statistics counters) to a
        player's profile. Call publish() after the transaction commits."""
        try:
            found = self._profiles.apply_point_delta(
                user_id, points, experience, **counters
            )
        except SQLAlchemyError as e:
            logging.warning(f"Database error applying delta for {user_id}: {e}")
            return storage_error("apply_delta", str(e))
        if not found:
            return not_found_error("Profile", user_id, "apply_delta")
        if points:
            self._pending[user_id] += points
        return Ok(None)

    def spend(self, user_id: str, amount: int) -> Result[bool]:
        """Deduct points if the balance covers them. Returns Ok(False)
        if it does not. Call publish() after the transaction commits."""
        try:
            spent = self._profiles.deduct_points_if_available(user_id, amount)
        except SQLAlchemyError as e:
            logging.warning(f"Database error deducting points from {user_id}: {e}")
            return storage_error("spend", str(e))
        if spent and amount:
            self._pending[user_id] -= amount
        return Ok(spent)

    def publish(self) -> None:
        """Send the queued increments to the index. The database already
        holds them, so a cache failure here is not an error: the index
        is invalidated and rebuilt by the next read."""
        pending, self._pending = self._pending, defaultdict(int)
        if self._cache is None:
            return
        for user_id, delta in pending.items():
            if not delta:
                continue
            try:
                self._cache.increment(self._key, user_id, delta)
            except CacheUnavailableError as e:
                logging.warning(
                    f"Rank index not updated for {len(pending)} players: {e}"
                )
                self.invalidate()
                return

    def discard(self) -> None:
        """Drop the queued increments of a rolled-back transaction"""
        self._pending.clear()

    def invalidate(self) -> None:
        """Mark the whole index as out of date, so that the next read
        rebuilds it from the database"""
        self._stale = True
        if self._cache is None:
            return
        try:
            self._cache.delete(self._marker)
        except CacheUnavailableError as e:
            logging.error(f"Unable to invalidate rank index {self._key}: {e}")

    def sync_user(self, user_id: str) -> Result[None]:
        """Set a player's index entry from the authoritative total"""
        if self._cache is None:
            return Ok(None)
        try:
            profile = self._profiles.get(user_id)
            if profile is None:
                self._cache.remove(self._key, user_id)
            else:
                self._cache.set_score(self._key, user_id, profile.total_points)
        except (SQLAlchemyError, CacheUnavailableError) as e:
            logging.warning(f"Unable to sync rank of {user_id}: {e}")
            return storage_error("sync_user", str(e))
        return Ok(None)

    def remove_user(self, user_id: str) -> Result[None]:
        """Remove a player from the index"""
        if self._cache is None:
            return Ok(None)
        try:
            self._cache.remove(self._key, user_id)
        except CacheUnavailableError as e:
            logging.warning(f"Unable to remove {user_id} from rank index: {e}")
            return storage_error("remove_user", str(e))
        return Ok(None)

    def rebuild(self) -> Result[int]:
        """Rebuild the whole index from the database.
        Returns the number of members written."""
        if self._cache is None:
            return Ok(0)
        try:
            totals = self._profiles.all_totals()
            self._cache.replace_all(
                self._key, totals, marker=self._marker, ttl=self._ttl
            )
        except (SQLAlchemyError, CacheUnavailableError) as e:
            logging.warning(f"Unable to rebuild rank index: {e}")
            return storage_error("rebuild", str(e))
        self._stale = False
        logging.info(f"Rebuilt rank index {self._key} with {len(totals)} players")
        return Ok(len(totals))

    # Reads

    def _db_read(self, operation: str, func: Callable[[], T], default: T) -> T:
        """Read from the database with bounded retries, degrading to
        the default if the database stays unavailable"""

        def attempt() -> Result[T]:
            try:
                return Ok(func())
            except SQLAlchemyError as e:
                if self._rollback is not None:
                    self._rollback()
                return storage_error(operation, str(e))

        result = with_retry(
            attempt,
            retries=self._retries,
            backoff=self._backoff,
            operation=operation,
        )
        return unwrap_or(result, default)

    def _index(self) -> Optional[RedisWrapper]:
        """The cache, if the rank index in it can be trusted, rebuilding
        the index first if needed. None means: read from the database.
        Raises CacheUnavailableError if Redis is unreachable."""
        cache = self._cache
        if cache is None:
            return None
        if self._stale or not cache.exists(self._marker):
            logging.info(f"Rank index {self._key} is out of date; rebuilding")
            if not isinstance(self.rebuild(), Ok):
                return None
        return cache

    def total_count(self) -> int:
        """The number of ranked players"""
        try:
            cache = self._index()
            if cache is not None:
                return cache.cardinality(self._key)
        except CacheUnavailableError as e:
            logging.warning(f"Rank index unavailable in total_count(): {e}")
        return self._db_read("total_count", self._profiles.count, 0)

    def rank_of(self, user_id: str) -> Optional[int]:
        """The 1-based descending rank of a player, or None if the
        player is not ranked"""
        try:
            cache = self._index()
            if cache is not None:
                return self._cached_rank(cache, user_id)
        except CacheUnavailableError as e:
            logging.warning(f"Rank index unavailable in rank_of(): {e}")
        return self._db_read("rank_of", lambda: self._profiles.rank_of(user_id), None)

    def _cached_rank(self, cache: RedisWrapper, user_id: str) -> Optional[int]:
        ascending = cache.rank(self._key, user_id)
        if ascending is None:
            # Profiles created since the last rebuild have no entry yet
            profile = self._db_read(
                "rank_of", lambda: self._profiles.get(user_id), None
            )
            if profile is None or not isinstance(self.sync_user(user_id), Ok):
                return None
            ascending = cache.rank(self._key, user_id)
            if ascending is None:
                return None
        return cache.cardinality(self._key) - ascending

    def top(self, offset: int, limit: int) -> List[RankEntry]:
        """Ranked players from the given 0-based offset, best first"""
        if limit <= 0 or offset < 0:
            return []
        try:
            cache = self._index()
            if cache is not None:
                return self._cached_top(cache, offset, limit)
        except CacheUnavailableError as e:
            logging.warning(f"Rank index unavailable in top(): {e}")
        rows = self._db_read(
            "top", lambda: self._profiles.list_by_points(offset, limit), []
        )
        return [
            RankEntry(r.user_id, r.username, r.level, r.total_points) for r in rows
        ]

    def _cached_top(
        self, cache: RedisWrapper, offset: int, limit: int, repaired: bool = False
    ) -> List[RankEntry]:
        members = cache.range_desc(self._key, offset, offset + limit - 1)
        if not members:
            return []
        user_ids = [user_id for user_id, _ in members]
        profiles = self._db_read(
            "top", lambda: self._profiles.get_multi(user_ids), None
        )
        if profiles is None:
            # Player details are only in the database
            return []
        stale = any(
            user_id not in profiles or profiles[user_id].total_points != int(score)
            for user_id, score in members
        )
        if stale and not repaired:
            logging.info(f"Stale scores in rank index {self._key}; rebuilding")
            if isinstance(self.rebuild(), Ok):
                return self._cached_top(cache, offset, limit, repaired=True)
        return [
            RankEntry(p.user_id, p.username, p.level, p.total_points)
            for p in (profiles.get(user_id) for user_id in user_ids)
            if p is not None
        ]
