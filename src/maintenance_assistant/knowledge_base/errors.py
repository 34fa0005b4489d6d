"""
Exception hierarchy for the knowledge base.

Extraction and containment errors subclass ValueError and storage errors
subclass OSError so callers that already catch the builtin types keep working.
"""


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base failures."""


class ExtractionError(KnowledgeBaseError, ValueError):
    """Source text could not be read or contained no usable text."""


class UnsupportedFormatError(ExtractionError):
    """No extractor is available for the file's extension."""


class StorageError(KnowledgeBaseError, OSError):
    """A per-document storage unit could not be written or removed."""


class CorruptRecordError(KnowledgeBaseError, ValueError):
    """A persisted JSON record failed validation."""


class PathContainmentError(KnowledgeBaseError, ValueError):
    """A path resolved outside the knowledge base root."""
