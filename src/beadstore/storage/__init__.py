"""Issue storage backends."""

from beadstore.storage.file_store import FileStorage
from beadstore.storage.interface import ScanResult, Storage

__all__ = ["FileStorage", "ScanResult", "Storage"]
