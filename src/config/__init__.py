"""Configuration management for the Puffin sync engine."""

from .settings import Settings
from .sync import BackupTag, SyncSettings

__all__ = ["Settings", "SyncSettings", "BackupTag"]
