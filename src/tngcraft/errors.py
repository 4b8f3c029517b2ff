"""
Status codes and errors
=======================

This module contains the status codes reported at every TNGCraft
boundary and the exceptions that carry them.

Every exception raised by the block engine, the frame-set manager, and
the value codec derives from :class:`TNGError` and is tagged with a
:class:`Status`:

* :attr:`Status.FAILURE` errors are recoverable. The caller may retry,
  skip the offending block, or treat the condition as "not found".
* :attr:`Status.CRITICAL` errors invalidate the whole stream. The caller
  must abort the enclosing traversal.

Reaching the end of the data is not an error and is reported as
:code:`None` by the readers.
"""

from enum import IntEnum
from typing import Any


class Status(IntEnum):
    """
    Outcome of an operation at a TNGCraft boundary.
    """

    SUCCESS = 0
    FAILURE = 1
    CRITICAL = 2


class TNGError(Exception):
    """
    Base class for all TNGCraft errors.

    Parameters
    ----------
    message : `str`
        Human-readable description of the error.

    **context
        Additional information about where the error occurred, such as
        the block ID or the byte offset in the file.
    """

    status = Status.FAILURE

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context

    @property
    def kind(self) -> str:
        """
        Name of the error kind.
        """

        return self.__class__.__name__


class TNGFailure(TNGError):
    """
    Recoverable error. The rest of the file is still usable.
    """

    status = Status.FAILURE


class TNGCritical(TNGError):
    """
    Unrecoverable error. Further traversal of the file must stop.
    """

    status = Status.CRITICAL


class ShortReadError(TNGFailure):
    """
    The stream ended before the declared number of bytes was read.
    """


class IntegrityError(TNGFailure):
    """
    The MD5 digest stored in a block header does not match its payload.
    """


class MalformedPayloadError(TNGFailure):
    """
    A block payload does not have the layout its block ID requires.
    """


class BlockNotFoundError(TNGFailure):
    """
    A requested block ID is absent from the current frame set.
    """


class ConfigurationError(TNGFailure, ValueError):
    """
    A frame set, mapping table, or data block was configured with
    inconsistent parameters.
    """


class CodecError(TNGFailure, ValueError):
    """
    Values cannot be encoded with, or decoded from, the requested
    algorithm.
    """


class CorruptHeaderError(TNGCritical):
    """
    A block header is structurally inconsistent.
    """
