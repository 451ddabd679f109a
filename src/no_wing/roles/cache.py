"""Role session cache with single-flight assumption."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Awaitable, Callable

from no_wing.roles.models import RoleSession

AssumeFn = Callable[[], Awaitable[RoleSession | None]]


class SessionCache:
    """Role sessions keyed by role ARN.

    A session is handed out only while ``now + safety_margin`` is before its
    expiration; stale entries are evicted on access and a fresh session is
    requested through the caller's ``assume_fn``.
    """

    def __init__(self, safety_margin_seconds: int, max_entries: int = 64) -> None:
        self._safety_margin_seconds = safety_margin_seconds
        self._max_entries = max_entries
        self._cache: OrderedDict[str, RoleSession] = OrderedDict()
        self._in_flight: dict[str, asyncio.Future[RoleSession | None]] = {}
        self._lock = asyncio.Lock()

    @property
    def safety_margin_seconds(self) -> int:
        return self._safety_margin_seconds

    def get_valid(self, role_arn: str) -> RoleSession | None:
        session = self._cache.get(role_arn)
        if session is None:
            return None
        if not session.is_valid(self._safety_margin_seconds):
            del self._cache[role_arn]
            return None
        self._cache.move_to_end(role_arn)
        return session

    def put(self, session: RoleSession) -> None:
        self._cache[session.role_arn] = session
        self._cache.move_to_end(session.role_arn)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)

    async def get_or_assume(self, role_arn: str, assume_fn: AssumeFn) -> RoleSession | None:
        async with self._lock:
            session = self.get_valid(role_arn)
            if session is not None:
                return session

            in_flight = self._in_flight.get(role_arn)
            if in_flight is None:
                in_flight = asyncio.get_running_loop().create_future()
                self._in_flight[role_arn] = in_flight
                should_assume = True
            else:
                should_assume = False

        if not should_assume:
            return await in_flight

        try:
            session = await assume_fn()
        except BaseException as exc:
            async with self._lock:
                future = self._in_flight.pop(role_arn, None)
                if future and not future.done():
                    future.set_exception(exc)
                    # Nobody may be waiting; mark the exception retrieved.
                    future.exception()
            raise

        async with self._lock:
            if session is not None:
                self.put(session)
            future = self._in_flight.pop(role_arn, None)
            if future and not future.done():
                future.set_result(session)

        return session

    def active_sessions(self) -> list[RoleSession]:
        return [s for s in self._cache.values() if s.is_valid(self._safety_margin_seconds)]

    def evict_expired(self) -> int:
        expired = [
            arn for arn, s in self._cache.items() if not s.is_valid(self._safety_margin_seconds)
        ]
        for arn in expired:
            del self._cache[arn]
        return len(expired)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
