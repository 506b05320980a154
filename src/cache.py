"""

    Cache - Redis wrapper for the Guess The Link engine

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module wraps the Redis client in a thin object exposing the
    sorted-set primitives that the rank index needs.

    The sorted sets held here are derived data: every score can be
    recomputed from the relational store. Callers therefore need to know
    when Redis is unreachable, so that they can fall back, rather than
    receive an empty answer. After one retry, a connection failure is
    raised as CacheUnavailableError.

"""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

import logging

import redis

from config import REDISHOST, REDISPORT


# Redis errors that indicate that the server is (temporarily) unreachable
_TRANSIENT_ERRORS = (
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
    redis.exceptions.TryAgainError,
)


class CacheUnavailableError(Exception):
    """Redis could not be reached, even after a retry"""


def _str(member: Union[str, bytes]) -> str:
    """Members come back as bytes unless the client decodes responses"""
    if isinstance(member, bytes):
        return member.decode("utf-8")
    return member


class RedisWrapper:
    """Wrapper class around the Redis client, exposing
    the sorted-set operations used by the leaderboard"""

    def __init__(
        self,
        redis_host: Optional[str] = None,
        redis_port: Optional[int] = None,
        *,
        client: Optional[Any] = None,
    ) -> None:
        if client is None:
            # Create a Redis client instance
            client = redis.Redis(
                host=redis_host or REDISHOST,
                port=redis_port or REDISPORT,
                retry_on_timeout=True,
                decode_responses=True,
            )
        self._client = client

    def _call_with_retry(
        self, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Any:
        """Call a client function, attempting one retry
        upon a connection error"""
        attempts = 0
        while True:
            try:
                return func(*args, **kwargs)
            except _TRANSIENT_ERRORS as e:
                if attempts == 0:
                    logging.warning(f"Retrying Redis call after {repr(e)}")
                    attempts += 1
                    continue
                logging.error(f"Redis error {repr(e)} persisted after retrying")
                raise CacheUnavailableError(repr(e)) from e

    def increment(self, key: str, member: str, delta: float) -> float:
        """Atomically add delta to a member's score (ZINCRBY),
        creating the member if needed. Returns the new score."""
        return float(self._call_with_retry(self._client.zincrby, key, delta, member))

    def rank(self, key: str, member: str) -> Optional[int]:
        """The 0-based ascending rank of a member, or None if absent"""
        return self._call_with_retry(self._client.zrank, key, member)

    def score(self, key: str, member: str) -> Optional[float]:
        """The score of a member, or None if absent"""
        return self._call_with_retry(self._client.zscore, key, member)

    def cardinality(self, key: str) -> int:
        """Number of members in the sorted set"""
        return int(self._call_with_retry(self._client.zcard, key) or 0)

    def range_desc(self, key: str, start: int, stop: int) -> List[Tuple[str, float]]:
        """Members with scores, highest first, from start to stop
        inclusive (0-based)"""
        result = self._call_with_retry(
            self._client.zrevrange, key, start, stop, withscores=True
        )
        return [(_str(member), float(score)) for member, score in result or []]

    def set_score(self, key: str, member: str, score: float) -> None:
        """Set a member's score outright"""
        self._call_with_retry(self._client.zadd, key, {member: score})

    def remove(self, key: str, member: str) -> bool:
        """Remove a member; True if it was present"""
        return bool(self._call_with_retry(self._client.zrem, key, member))

    def exists(self, key: str) -> bool:
        return bool(self._call_with_retry(self._client.exists, key))

    def delete(self, *keys: str) -> None:
        self._call_with_retry(self._client.delete, *keys)

    def replace_all(
        self,
        key: str,
        scores: Mapping[str, float],
        marker: Optional[str] = None,
        ttl: int = 0,
    ) -> None:
        """Replace the whole sorted set with the given scores,
        atomically (MULTI/EXEC). If a marker key is given, it is set
        in the same transaction, expiring after ttl seconds if ttl > 0."""

        def replace() -> Any:
            # Start a pipeline (transaction is implicit with MULTI/EXEC).
            # A pipeline is reset after execute(), so a retry builds a new one.
            pipe = self._client.pipeline()
            # Delete the set (if it exists)
            pipe.delete(key)
            if scores:
                pipe.zadd(key, dict(scores))
            if marker:
                pipe.set(marker, 1, ex=ttl or None)
            return pipe.execute()

        self._call_with_retry(replace)

