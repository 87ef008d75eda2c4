"""Services built on top of the storage layer."""
