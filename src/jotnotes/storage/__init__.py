"""Storage layer for jotnotes: note file codec and directory mapping."""

from jotnotes.storage.directory_mapper import DirectoryMapper, ScanResult
from jotnotes.storage.front_matter import FlatHandler, FrontMatterCodec

__all__ = [
    "DirectoryMapper",
    "ScanResult",
    "FlatHandler",
    "FrontMatterCodec",
]
