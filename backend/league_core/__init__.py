"""Data access and standings logic shared by the league pages and overlays."""

from .loader import BroadcastStoreError, DataStore
from .standings import DriverStageTotals, aggregate_driver_points, rank_by_points

__all__ = [
    "BroadcastStoreError",
    "DataStore",
    "DriverStageTotals",
    "aggregate_driver_points",
    "rank_by_points",
]
