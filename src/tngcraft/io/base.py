from abc import abstractmethod
import logging
from pathlib import Path
from types import TracebackType
from typing import Self
import weakref

import psutil

from . import HashMode


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        format="{asctime} | {levelname:^8s} | {message}",
        style="{",
        level=logging.INFO if verbose else logging.WARNING,
    )


class BaseIO:
    """
    Base class for TNG file readers and writers.

    Subclasses must implement the :meth:`open` and :meth:`close` methods
    to handle the opening and closing of the file.

    Parameters
    ----------
    filename : `str` or `pathlib.Path`, positional-only
        Filename or path to the TNG file.

    hash_mode : `int`, keyword-only, default: :code:`HashMode.USE`
        Whether MD5 digests are generated on write and verified on
        read.

    parallel : `bool`, keyword-only, default: :code:`False`
        Determines whether data blocks are encoded or decoded in
        parallel.

    n_workers : `int`, keyword-only, optional
        Number of threads to use when processing data blocks in
        parallel. If not specified, the number of logical threads
        available is used.

    verbose : `bool`, keyword-only, default: :code:`False`
        Determines whether progress is logged.
    """

    def __init__(
        self,
        filename: str | Path,
        /,
        *,
        hash_mode: int = HashMode.USE,
        parallel: bool = False,
        n_workers: int | None = None,
        verbose: bool = False,
    ) -> None:
        # Store settings
        self._filename = Path(filename).resolve()
        self._hash_mode = HashMode(hash_mode)
        self._parallel = parallel
        self._n_workers = n_workers or psutil.cpu_count()
        self._verbose = verbose
        _configure_logging(verbose)

        # Create finalizer
        self._finalizer = weakref.finalize(self, self.close)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self._finalizer()

    @property
    def filename(self) -> Path:
        """
        Path to the TNG file.
        """

        return self._filename

    @property
    def hash_mode(self) -> HashMode:
        """
        Whether MD5 digests are generated on write and verified on
        read.
        """

        return self._hash_mode

    @abstractmethod
    def open(self) -> None:
        """
        Opens the TNG file and stores a handle to it.
        """

        pass

    def close(self) -> None:
        """
        Closes the TNG file and deletes the handle.
        """

        if hasattr(self, "_file"):
            self._file.close()
            del self._file
