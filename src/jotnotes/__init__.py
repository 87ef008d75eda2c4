"""
jotnotes - a local-first note manager backed by plain markdown files.

Notes live as one markdown file per note inside a user-chosen directory tree.
This package implements the persistence engine that keeps the in-memory note
collection and its on-disk projection consistent.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jotnotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
