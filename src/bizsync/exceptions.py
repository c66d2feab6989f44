"""
Exception taxonomy for the sync subsystem.

Nothing here is fatal to the process: the worst case is a dataset that is
valid locally but stays unsynchronized.
"""


class SyncError(Exception):
    """Base exception for all bizsync errors."""

    pass


class ConnectivityError(SyncError):
    """The device is offline."""

    pass


class NoEndpointAvailable(SyncError):
    """None of the candidate remote URLs answered the health probe."""

    def __init__(self, tried: list[str] | None = None):
        self.tried = list(tried or [])
        if self.tried:
            message = f"No accessible CouchDB server found (tried {', '.join(self.tried)})"
        else:
            message = "No accessible CouchDB server found"
        super().__init__(message)


class RemoteNotFound(SyncError):
    """A remote database required for replication does not exist."""

    def __init__(self, database: str, status_code: int | None = None):
        self.database = database
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"Remote database '{database}' does not exist{detail}")


class ReplicationError(SyncError):
    """Session-level replication failure. The session stays alive in Errored."""

    def __init__(self, collection: str, message: str):
        self.collection = collection
        super().__init__(f"Replication error for '{collection}': {message}")


class DurablePersistenceError(SyncError):
    """Reading or writing the on-device durable cache failed."""

    pass


class NotFoundError(SyncError):
    """Entity is absent from the local store."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}: document '{doc_id}' not found")


class AlreadyExistsError(SyncError):
    """A document with the same primary key already exists."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}: document '{doc_id}' already exists")


class SchemaValidationError(SyncError):
    """A document does not satisfy its collection schema."""

    def __init__(self, collection: str, errors: list[str]):
        self.collection = collection
        self.errors = errors
        super().__init__(f"{collection}: invalid document: {'; '.join(errors)}")


class StoreClosedError(SyncError):
    """The local store was destroyed and can no longer be used."""

    pass
