"""
Offline-first business/article store with CouchDB replication.

Keeps a small relational dataset usable without a network: an in-memory
store serves every read, a SQLite snapshot survives restarts, and live
replication sessions mirror the data to a shared CouchDB server whenever
one of the configured endpoints is reachable.
"""

__version__ = "0.1.0"
