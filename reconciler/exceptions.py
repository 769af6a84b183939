"""Error types raised by the reconciler."""


class ReconcilerError(Exception):
    """Base class for reconciler failures."""


class ConfigurationError(ReconcilerError):
    """Credentials or connection settings are missing or invalid."""


class StoreUnavailableError(ReconcilerError):
    """Firestore or PostgreSQL could not be reached."""

    def __init__(self, store: str, message: str):
        self.store = store
        super().__init__(f"{store} unavailable: {message}")


class MigrationError(ReconcilerError):
    """A migration phase failed as a whole."""


class UnsupportedRoleError(ReconcilerError, ValueError):
    """A role outside the known role set was supplied."""

    def __init__(self, role):
        self.role = role
        super().__init__(f"Unsupported role: {role}")
