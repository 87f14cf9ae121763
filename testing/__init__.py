"""Fixtures and helpers shared by tests in tests/*."""
