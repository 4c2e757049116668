from abc import ABC, abstractmethod


class ReplicationCatalog(ABC):
    """Persisted record of which databases are shipped where.

    Configuration writes primary databases, primary links and secondary
    entries, and removes them again when a pair rolls back; recovery only
    reads entries back.
    """

    @abstractmethod
    def register_primary_database(self, role, link) -> str:
        """Register the shipped database on the primary and return its primary id."""
        raise NotImplementedError

    @abstractmethod
    def is_primary_registered(self, role, database) -> bool:
        raise NotImplementedError

    @abstractmethod
    def unregister_primary_database(self, role, database):
        raise NotImplementedError

    @abstractmethod
    def register_primary(self, role, link):
        """Link a primary database to one secondary."""
        raise NotImplementedError

    @abstractmethod
    def unregister_primary(self, role, link):
        raise NotImplementedError

    @abstractmethod
    def register_secondary(self, role, link) -> str:
        """Register a secondary database and return its secondary id."""
        raise NotImplementedError

    @abstractmethod
    def unregister_secondary(self, role, secondary_database):
        raise NotImplementedError

    @abstractmethod
    def update_markers(self, role, secondary_database, last_copied_file=None,
                       last_restored_file=None):
        raise NotImplementedError

    @abstractmethod
    def lookup(self, role, database):
        """Return the RecoveryCatalogEntry for a secondary database, or None."""
        raise NotImplementedError

    @abstractmethod
    def list_databases(self, role) -> list:
        raise NotImplementedError
