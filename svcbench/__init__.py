"""Concurrent benchmark harness for request/response services."""

__version__ = "0.1.0"
