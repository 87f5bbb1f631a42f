"""Reclaiming ports held by sessions that no longer exist.

The allocator's TTL bounds how long a leaked port stays unusable; a sweep
frees it sooner by comparing live allocations with the sessions the
orchestrator still knows about.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field

import structlog

from .allocator import PortAllocator

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    """Outcome of one orphan sweep."""

    checked: int = 0
    orphans: dict[int, str] = field(default_factory=dict)
    released: list[int] = field(default_factory=list)
    dry_run: bool = False


def find_orphans(
    allocations: Mapping[int, str], live_session_ids: Iterable[str]
) -> dict[int, str]:
    """Return the allocations whose owner is not among the live sessions."""
    live = set(live_session_ids)
    return {port: owner for port, owner in allocations.items() if owner not in live}


async def sweep_orphans(
    allocator: PortAllocator,
    live_session_ids: Iterable[str],
    dry_run: bool = False,
) -> SweepReport:
    """Release ports owned by sessions that are no longer live.

    Each orphan is released with ``release_if_owner`` so a port that was
    re-allocated to a live session during the sweep is kept.

    Args:
        allocator: Allocator whose range is swept.
        live_session_ids: Sessions that must keep their ports.
        dry_run: Only report orphans, release nothing.
    """
    allocations = await allocator.list_allocated()
    report = SweepReport(
        checked=len(allocations),
        orphans=find_orphans(allocations, live_session_ids),
        dry_run=dry_run,
    )

    for port, session_id in report.orphans.items():
        if dry_run:
            logger.info("orphan_found", port=port, session_id=session_id)
            continue
        if await allocator.release_if_owner(port, session_id):
            logger.info("orphan_released", port=port, session_id=session_id)
            report.released.append(port)

    logger.info(
        "orphan_sweep_finished",
        checked=report.checked,
        orphans=len(report.orphans),
        released=len(report.released),
        dry_run=dry_run,
    )
    return report


async def run_periodic_sweep(
    allocator: PortAllocator,
    live_sessions: Callable[[], Awaitable[Iterable[str]]],
    interval: float,
) -> None:
    """Sweep orphans every ``interval`` seconds until cancelled.

    A failing iteration is logged and the loop carries on with the next one.
    """
    logger.info("periodic_sweep_started", interval=interval)
    while True:
        try:
            live = await live_sessions()
            await sweep_orphans(allocator, live)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("periodic_sweep_error", error=str(e))

        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            break
    logger.info("periodic_sweep_stopped")
