"""
TNG reader
==========

This module contains the reader for TNG files. The file headers are
parsed when the reader is created; frame sets are read sequentially or
by following the file positions that link them.
"""

from collections.abc import Iterator
import logging
from pathlib import Path
import warnings

from . import (
    FIRST_DATA_BLOCK_ID,
    FORMAT_VERSION,
    NO_NEIGHBOR,
    BlockID,
    BlockType,
    HashMode,
)
from .base import BaseIO
from .block import Block, detect_byte_order, read_block
from .frameset import (
    DataBlock,
    FrameSet,
    read_frame_set,
    read_next_frame_set,
)
from .header import GeneralInfo, parse_endianness_block
from ..errors import MalformedPayloadError
from ..topology import Topology


class TNGReader(BaseIO):
    """
    TNG file reader.

    The byte order is detected from the first block. Blocks of unknown
    kinds found among the file headers are kept in
    :attr:`opaque_blocks` so that they can be written back unchanged.

    Parameters
    ----------
    filename : `str` or `pathlib.Path`, positional-only
        Filename or path to the TNG file.

    hash_mode : `int`, keyword-only, default: :code:`HashMode.USE`
        Whether stored MD5 digests are verified.

    lazy : `bool`, keyword-only, default: :code:`True`
        Determines whether data block payloads are only read when
        requested. If :code:`False`, every frame set is fully loaded as
        soon as it is read.

    parallel : `bool`, keyword-only, default: :code:`False`
        Determines whether data block payloads are decoded in parallel
        when frame sets are fully loaded.

    n_workers : `int`, keyword-only, optional
        Number of threads to use when decoding in parallel. If not
        specified, the number of logical threads available is used.

    verbose : `bool`, keyword-only, default: :code:`False`
        Determines whether progress is logged.

    Examples
    --------
    >>> with TNGReader("water.tng") as reader:
    ...     for frame_set in reader:
    ...         positions, _ = frame_set.get_particle_data(BlockID.POSITIONS)
    """

    def __init__(
        self,
        filename: str | Path,
        /,
        *,
        hash_mode: int = HashMode.USE,
        lazy: bool = True,
        parallel: bool = False,
        n_workers: int | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(
            filename,
            hash_mode=hash_mode,
            parallel=parallel,
            n_workers=n_workers,
            verbose=verbose,
        )
        if not self._filename.is_file():
            raise FileNotFoundError(f"No TNG file found at '{self._filename}'.")
        self._lazy = lazy

        # Create and store handle to file
        self.open()
        self._byte_order = detect_byte_order(self._file)
        self.read_headers()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}('{self._filename.name}', "
            f"hash_mode={self._hash_mode.name}, lazy={self._lazy}, "
            f"parallel={self._parallel}, n_workers={self._n_workers})"
        )

    def __iter__(self) -> Iterator[FrameSet]:
        frame_set = self.read_first_frame_set()
        while frame_set is not None:
            yield frame_set
            if frame_set.next_frame_set_file_pos == NO_NEIGHBOR:
                return
            frame_set = self.read_frame_set_at(frame_set.next_frame_set_file_pos)

    @property
    def byte_order(self) -> str:
        """
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.
        """

        return self._byte_order

    def _finish(self, frame_set: FrameSet | None) -> FrameSet | None:
        if frame_set is not None:
            if not self._lazy:
                frame_set.load(parallel=self._parallel, n_workers=self._n_workers)
            logging.info(
                f"Read frame set with frames {frame_set.first_frame}-"
                f"{frame_set.last_frame} at byte {frame_set.file_pos:,}."
            )
        return frame_set

    def read_headers(self) -> None:
        """
        Reads the file headers from the start of the file.

        The endianness and string length block must come first and the
        general information block must be present. Reading stops at the
        first frame set.
        """

        self._file.seek(0)
        block = read_block(self._file, self._hash_mode, self._byte_order)
        info = parse_endianness_block(block, self._byte_order)
        if info["version"] > FORMAT_VERSION:
            warnings.warn(
                f"'{self._filename.name}' uses file format version "
                f"{info['version']}, but only version {FORMAT_VERSION} is "
                "fully supported."
            )
        self.version = info["version"]

        self.general_info = None
        self.topology = None
        self.non_trajectory = FrameSet(0, 1)
        self.opaque_blocks = []
        while True:
            position = self._file.tell()
            block = read_block(self._file, self._hash_mode, self._byte_order)
            if block is None:
                break
            if block.block_id == BlockID.TRAJECTORY_FRAME_SET:
                self._file.seek(position)
                break
            if block.block_id == BlockID.GENERAL_INFO:
                self.general_info = GeneralInfo.from_block(block, self._byte_order)
            elif block.block_id == BlockID.MOLECULES:
                self.topology = Topology.from_payload(block.payload, self._byte_order)
            elif (
                block.block_id >= FIRST_DATA_BLOCK_ID
                and block.block_type == BlockType.NON_TRAJECTORY
            ):
                self.non_trajectory.attach_data_block(
                    DataBlock.from_block(block, self._byte_order)
                )
            else:
                warnings.warn(
                    f"Preserving block {block.block_id} ('{block.name}') of "
                    f"unknown kind at byte {block.file_pos}."
                )
                self.opaque_blocks.append(block)
        if self.general_info is None:
            raise MalformedPayloadError(
                f"'{self._filename.name}' has no general information block.",
                block_id=BlockID.GENERAL_INFO,
            )
        self._frame_sets_pos = self._file.tell()
        logging.info(
            f"Read file headers of '{self._filename.name}' "
            f"({self._frame_sets_pos:,} bytes)."
        )

    def rewind(self) -> None:
        """
        Moves back to the first frame set.
        """

        self._file.seek(self._frame_sets_pos)

    def read_block_next(self) -> Block | None:
        """
        Reads the next block of any kind at the current position.

        Returns
        -------
        block : `Block` or `None`
            Block read, or `None` if the end of the file was reached.
        """

        return read_block(self._file, self._hash_mode, self._byte_order)

    def read_next_frame_set(self) -> FrameSet | None:
        """
        Reads the frame set at or after the current position.

        Returns
        -------
        frame_set : `FrameSet` or `None`
            Frame set, or `None` if the end of the file was reached.
        """

        return self._finish(
            read_next_frame_set(
                self._file, self._hash_mode, self._byte_order, lazy=True
            )
        )

    def read_frame_set_at(self, position: int) -> FrameSet:
        """
        Reads the frame set starting at a known file position.

        Parameters
        ----------
        position : `int`
            Byte offset of the frame set block.

        Returns
        -------
        frame_set : `FrameSet`
            Frame set.
        """

        self._file.seek(position)
        block = read_block(self._file, self._hash_mode, self._byte_order)
        if block is None or block.block_id != BlockID.TRAJECTORY_FRAME_SET:
            raise MalformedPayloadError(
                f"No frame set starts at byte {position}.", position=position
            )
        return self._finish(
            read_frame_set(
                self._file, block, self._hash_mode, self._byte_order, lazy=True
            )
        )

    def read_first_frame_set(self) -> FrameSet | None:
        """
        Reads the first frame set, or returns `None` if the file has
        none.
        """

        if self.general_info.first_frame_set_pos == NO_NEIGHBOR:
            self.rewind()
            return self.read_next_frame_set()
        return self.read_frame_set_at(self.general_info.first_frame_set_pos)

    def read_last_frame_set(self) -> FrameSet | None:
        """
        Reads the last frame set, or returns `None` if the file has
        none.

        If the general information block does not record the position
        of the last frame set, the next file positions are followed from
        the first frame set.
        """

        if self.general_info.last_frame_set_pos != NO_NEIGHBOR:
            return self.read_frame_set_at(self.general_info.last_frame_set_pos)
        frame_set = self.read_first_frame_set()
        while (
            frame_set is not None
            and frame_set.next_frame_set_file_pos != NO_NEIGHBOR
        ):
            frame_set = self.read_frame_set_at(frame_set.next_frame_set_file_pos)
        return frame_set

    def find_frame_set(
        self, frame: int, start: FrameSet | None = None
    ) -> FrameSet | None:
        """
        Finds the frame set containing a frame by following the next or
        previous file positions.

        Parameters
        ----------
        frame : `int`
            Frame number.

        start : `FrameSet`, optional
            Frame set to start searching from. If not specified, the
            search starts from the first frame set.

        Returns
        -------
        frame_set : `FrameSet` or `None`
            Frame set containing `frame`, or `None` if no frame set does.
        """

        frame_set = self.read_first_frame_set() if start is None else start
        direction = 0
        while frame_set is not None:
            if frame < frame_set.first_frame:
                step, position = -1, frame_set.prev_frame_set_file_pos
            elif frame > frame_set.last_frame:
                step, position = 1, frame_set.next_frame_set_file_pos
            else:
                return frame_set

            # Turning around means the frame falls in a gap
            if position == NO_NEIGHBOR or direction == -step:
                return None
            direction = step
            frame_set = self.read_frame_set_at(position)
        return None

    def open(self) -> None:
        """
        Opens the TNG file and stores a handle to it.
        """

        self._file = open(self._filename, "rb")
