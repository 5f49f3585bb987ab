"""Exception hierarchy shared across NoteFinder."""

from __future__ import annotations


class NoteFinderError(Exception):
    """Base class for all NoteFinder errors."""


class ConfigError(NoteFinderError):
    """Settings file could not be parsed."""


class StorageError(NoteFinderError):
    """Embedding database could not be read or written."""


class IndexingBusyError(NoteFinderError):
    """An indexing pass is already running for some collection."""


class ModelDownloadError(NoteFinderError):
    """A model asset could not be fetched."""


class InferenceError(NoteFinderError):
    """Base class for inference client failures."""


class WorkerNotReadyError(InferenceError):
    pass


class InferenceTimeoutError(InferenceError):
    pass


class WorkerCrashedError(InferenceError):
    pass


class ProtocolError(InferenceError):
    """The inference worker sent a message the client cannot handle."""
