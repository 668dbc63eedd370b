from .base import ChangeFeed, ChangePage, TokenSource
from .google_drive import GoogleDriveChangeFeed

__all__ = [
    "ChangeFeed",
    "ChangePage",
    "GoogleDriveChangeFeed",
    "TokenSource",
]
