"""Periodic background jobs (album refresh, disk sweep)."""

from photofeed.tasks.refresh_albums import RefreshResult, refresh_tracked_albums
from photofeed.tasks.sweep_cache import SweepReport, sweep_cache

__all__ = ["RefreshResult", "SweepReport", "refresh_tracked_albums", "sweep_cache"]
