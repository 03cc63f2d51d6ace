"""Deduplicated record store and its durable blob backends."""

__all__ = ["backends", "record_store"]
