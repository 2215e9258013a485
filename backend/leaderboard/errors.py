"""Persistence errors shared by the snapshot repository and the country directory."""


class RepositoryError(Exception):
    """A blob-store read or write failed, or a stored object could not be decoded."""


class InvalidIndexError(RepositoryError):
    """The stored snapshot index exists but does not match the index schema."""


class InvalidSnapshotError(ValueError):
    """A snapshot failed schema validation and was not persisted or returned."""


class InvalidDirectoryError(ValueError):
    """A country directory failed schema validation and was not persisted."""
