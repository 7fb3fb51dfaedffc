"""Data models for the CricClubs data sync host."""

from .config import ClientConfig, StoreConfig, SyncOptions, SyncSettings

__all__ = [
    "ClientConfig",
    "StoreConfig",
    "SyncOptions",
    "SyncSettings",
]
