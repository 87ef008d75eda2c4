"""Data models for jotnotes."""
