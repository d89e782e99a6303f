"""Distributed build components: artifact and file caches, HTTP transport, scheduling and a build client."""

__version__ = "0.1.0"