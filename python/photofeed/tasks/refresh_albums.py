"""Periodic refresh of recently-used albums.

- Prune tracked tokens past their access TTL
- Refresh the remaining tokens in batches of batch_size
- Sleep batch_delay_s between batches to keep provider load low
- Skip tokens whose background refresh is already in flight
- A failure for one token is logged and does not stop the sweep
"""

import asyncio
from dataclasses import dataclass, field
from uuid import uuid4

from photofeed.errors import ApiError
from photofeed.logging import configure_task_logging, get_logger
from photofeed.services.albums import AlbumService
from photofeed.services.redact import fingerprint

logger = get_logger(__name__)


@dataclass
class RefreshResult:
    refreshed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    pruned: int = 0
    batches: int = 0


async def refresh_tracked_albums(
    albums: AlbumService, batch_size: int, batch_delay_s: float
) -> RefreshResult:
    """Refresh every tracked album token.

    Returns:
        Per-token outcome lists and batch count.
    """
    configure_task_logging(task_name="refresh_tracked_albums", task_id=uuid4().hex[:8])
    result = RefreshResult()

    result.pruned = len(albums.tracker.prune())
    tokens = [tracked.token for tracked in albums.tracker.active()]

    for start in range(0, len(tokens), batch_size):
        if start > 0 and batch_delay_s > 0:
            await asyncio.sleep(batch_delay_s)

        batch = tokens[start : start + batch_size]
        result.batches += 1
        outcomes = await asyncio.gather(
            *(_refresh_one(albums, token) for token in batch), return_exceptions=True
        )
        for token, outcome in zip(batch, outcomes, strict=True):
            if outcome is None:
                result.skipped.append(token)
            elif isinstance(outcome, BaseException):
                result.failed.append(token)
                if not isinstance(outcome, ApiError):
                    logger.error(
                        "album_refresh_error",
                        token_fp=fingerprint(token),
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
            else:
                result.refreshed.append(token)

    logger.info(
        "tracked_albums_refreshed",
        refreshed=len(result.refreshed),
        failed=len(result.failed),
        skipped=len(result.skipped),
        pruned=result.pruned,
        batches=result.batches,
    )
    return result


async def _refresh_one(albums: AlbumService, token: str) -> bool | None:
    if not albums.flags.try_begin(token):
        return None
    try:
        await albums.refresh(token)
        return True
    finally:
        albums.flags.clear(token)
