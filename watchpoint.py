"""
Watchpoint pool.

A fixed set of NR_WP slots.  Slots move between the free list and the
active list; deciding when a watchpoint fires is left to the caller.
"""

from __future__ import annotations

import logging
from typing import Optional

log = logging.getLogger(__name__)

NR_WP = 32


class WatchpointError(Exception):
    pass


class Watchpoint:
    def __init__(self, no: int):
        self.no = no
        self.expr = ""
        self.active = False

    def __repr__(self):
        return f"Watchpoint({self.no}, {self.expr!r})"


class WatchpointPool:
    def __init__(self, size: int = NR_WP):
        self.slots = [Watchpoint(i) for i in range(size)]

    def new_wp(self, expr: str) -> Watchpoint:
        """Take the lowest-numbered free slot."""
        for wp in self.slots:
            if not wp.active:
                wp.active = True
                wp.expr = expr
                return wp
        raise WatchpointError(f"no free watchpoint (all {len(self.slots)} in use)")

    def free_wp(self, wp: Watchpoint):
        if not wp.active:
            raise WatchpointError(f"watchpoint {wp.no} is not in use")
        wp.active = False
        wp.expr = ""

    def active(self) -> list[Watchpoint]:
        return [wp for wp in self.slots if wp.active]

    def free_count(self) -> int:
        return sum(1 for wp in self.slots if not wp.active)


_pool: Optional[WatchpointPool] = None


def init_wp_pool(size: int = NR_WP) -> WatchpointPool:
    """Build (or rebuild) the pool with every slot free."""
    global _pool
    _pool = WatchpointPool(size)
    log.debug("watchpoint pool ready with %d slots", size)
    return _pool


def _get_pool() -> WatchpointPool:
    if _pool is None:
        raise WatchpointError("watchpoint pool not initialized")
    return _pool


def new_wp(expr: str) -> Watchpoint:
    return _get_pool().new_wp(expr)


def free_wp(wp: Watchpoint):
    _get_pool().free_wp(wp)


def active_watchpoints() -> list[Watchpoint]:
    return _get_pool().active()
