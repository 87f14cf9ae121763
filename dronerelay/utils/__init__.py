"""Utilities shared across the relay modules."""
