"""Custom exception classes for the file service."""


class DFSException(Exception):
    """
    Base exception class for all file service errors.
    """
    pass


class FileNotFoundError(DFSException):
    """
    Raised when a requested file does not exist.
    """
    pass


class NoFileUploadedError(DFSException):
    """
    Raised when an upload request carries no file.
    """
    pass


class MetadataError(DFSException):
    """
    Raised when the file record store cannot be read or written.
    """
    pass
