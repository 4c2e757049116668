from abc import ABC, abstractmethod


class InstanceAccess(ABC):
    """Connection and query access to one database server role."""

    @abstractmethod
    def connect(self, role):
        raise NotImplementedError

    @abstractmethod
    def query(self, handle, statement, params=()):
        """Run a statement and return its rows as a list of dicts."""
        raise NotImplementedError

    @abstractmethod
    def execute(self, handle, statement, params=()):
        raise NotImplementedError

    @abstractmethod
    def close(self, handle):
        raise NotImplementedError


class PathService(ABC):
    @abstractmethod
    def path_reachable(self, role, path) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create_directory(self, role, path):
        raise NotImplementedError

    @abstractmethod
    def list_files(self, role, path) -> list:
        raise NotImplementedError

    @abstractmethod
    def copy_file(self, role, source, destination_directory) -> str:
        """Copy one file into a directory and return the new path."""
        raise NotImplementedError


class BackupService(ABC):
    @abstractmethod
    def produce_base_copy(self, role, database, directory, compress=False) -> str:
        """Take a full backup into ``directory`` and return its locator."""
        raise NotImplementedError

    @abstractmethod
    def produce_log_copy(self, role, database, directory, compress=False) -> str:
        """Back up the transaction log into ``directory`` and return its locator."""
        raise NotImplementedError

    @abstractmethod
    def apply(self, role, locator, target_database, mode, standby_directory="", replace=False):
        raise NotImplementedError
