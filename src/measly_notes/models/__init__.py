"""Data models for the Measly Notes core."""
