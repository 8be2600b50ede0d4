"""Composable RPC middleware: contexts, metadata, backoff, retries, timeouts and validation."""

__version__ = "2.0.0"