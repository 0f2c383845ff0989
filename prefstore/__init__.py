"""Per-user preference store.

Holds user preference records in memory, migrates them lazily to the current
record shape, and persists the whole set as one JSON document in a remote
gist. Modules do not perform network I/O on import.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
