"""
Core Utilities - Shared Plumbing

HTTP transport with retries, configuration, logging, errors and small helpers
used by every layer. Nothing here knows about deals or owners.
"""
