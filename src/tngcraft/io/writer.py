"""
TNG writer
==========

This module contains the writer that creates TNG files: the file
headers followed by a chain of frame sets.
"""

from collections.abc import Iterable
import logging
from pathlib import Path
from typing import Any

from . import ENDIANNESS, NO_NEIGHBOR, BlockID, BlockType, HashMode
from .base import BaseIO
from .block import Block, overwrite_block, write_block
from .frameset import DataBlock, FrameSet, new_frame_set, write_frame_set
from .header import GeneralInfo, endianness_block
from ..errors import ConfigurationError
from ..topology import Topology


class TNGWriter(BaseIO):
    """
    TNG file writer.

    Frame sets are appended one at a time. Each frame set is linked to
    the previous one, and the general information block is updated with
    the positions of the first and last frame sets after every write.

    Parameters
    ----------
    filename : `str` or `pathlib.Path`, positional-only
        Filename or path to the TNG file. An existing file is
        overwritten.

    general_info : `GeneralInfo`, keyword-only, optional
        Global metadata. If not specified, default metadata is used.

    topology : `Topology`, keyword-only, optional
        Structural hierarchy written to the molecules block.

    endianness : `str`, keyword-only, default: :code:`"little"`
        Byte order of the file, :code:`"little"` or :code:`"big"`.

    hash_mode : `int`, keyword-only, default: :code:`HashMode.USE`
        Whether MD5 digests are generated.

    parallel : `bool`, keyword-only, default: :code:`False`
        Determines whether the data blocks of a frame set are encoded in
        parallel.

    n_workers : `int`, keyword-only, optional
        Number of threads to use when encoding in parallel. If not
        specified, the number of logical threads available is used.

    verbose : `bool`, keyword-only, default: :code:`False`
        Determines whether progress is logged.

    Examples
    --------
    >>> with TNGWriter("water.tng", topology=topology) as writer:
    ...     frame_set = writer.new_frame_set(10)
    ...     frame_set.add_data_block(
    ...         BlockID.POSITIONS, DataType.FLOAT, positions,
    ...         particle_dependent=True, codec_id=CodecID.TNG
    ...     )
    ...     writer.write_frame_set(frame_set)
    """

    def __init__(
        self,
        filename: str | Path,
        /,
        *,
        general_info: GeneralInfo | None = None,
        topology: Topology | None = None,
        endianness: str = "little",
        hash_mode: int = HashMode.USE,
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
        if endianness not in ENDIANNESS:
            raise ValueError(
                f"Invalid endianness '{endianness}'. Valid values: "
                "'" + "', '".join(ENDIANNESS) + "'."
            )
        self._byte_order = ENDIANNESS[endianness]
        self.general_info = general_info or GeneralInfo()
        self.topology = topology
        self.non_trajectory = FrameSet(0, 1)
        self.opaque_blocks = []
        self._general_info_pos = None
        self._last_frame_set = None

        # Create and store handle to file
        self.open()

    def __repr__(self) -> str:
        endianness = next(k for k, v in ENDIANNESS.items() if v == self._byte_order)
        return (
            f"{self.__class__.__name__}('{self._filename.name}', "
            f"endianness='{endianness}', hash_mode={self._hash_mode.name}, "
            f"parallel={self._parallel}, n_workers={self._n_workers})"
        )

    @property
    def byte_order(self) -> str:
        """
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.
        """

        return self._byte_order

    @property
    def headers_written(self) -> bool:
        """
        Whether the file headers have been written.
        """

        return self._general_info_pos is not None

    @property
    def last_frame_set(self) -> FrameSet | None:
        """
        Most recently written frame set.
        """

        return self._last_frame_set

    def add_data_block(
        self, block_id: int, datatype: int, values: Any, **kwargs
    ) -> DataBlock:
        """
        Adds a non-trajectory data block, which is written with the
        file headers.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        datatype : `int`
            Element type of the values.

        values : array-like
            Values, with shape :math:`(1,\\,N_\\mathrm{values})` or, for
            particle-dependent blocks,
            :math:`(1,\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`.

        **kwargs
            Keyword arguments passed to :meth:`FrameSet.add_data_block`,
            except `n_frames` and `stride_length`.

        Returns
        -------
        data_block : `DataBlock`
            New data block.
        """

        if self.headers_written:
            raise ConfigurationError(
                "Non-trajectory data blocks must be added before the file "
                "headers are written."
            )
        block = self.non_trajectory.add_data_block(
            block_id, datatype, values, **kwargs
        )
        block.block_type = BlockType.NON_TRAJECTORY
        return block

    def add_opaque_block(self, block: Block) -> None:
        """
        Adds a block of any kind, such as one preserved by a reader,
        which is written unchanged with the file headers.
        """

        if self.headers_written:
            raise ConfigurationError(
                "Blocks must be added before the file headers are written."
            )
        self.opaque_blocks.append(block)

    def write_headers(self) -> None:
        """
        Writes the endianness and string length, general information,
        and molecules blocks, followed by the non-trajectory data blocks
        and opaque blocks.
        """

        if self.headers_written:
            raise ConfigurationError("The file headers have already been written.")
        write_block(
            endianness_block(self._byte_order),
            self._file,
            self._hash_mode,
            self._byte_order,
        )
        self._general_info_pos = self._file.tell()
        write_block(
            self.general_info.to_block(self._byte_order),
            self._file,
            self._hash_mode,
            self._byte_order,
        )
        if self.topology is not None:
            write_block(
                Block(
                    BlockID.MOLECULES,
                    self.topology.to_payload(self._byte_order),
                    block_type=BlockType.NON_TRAJECTORY,
                ),
                self._file,
                self._hash_mode,
                self._byte_order,
            )
        for data_block in self.non_trajectory.data_blocks():
            write_block(
                data_block.to_block(self._byte_order),
                self._file,
                self._hash_mode,
                self._byte_order,
            )
        for block in self.opaque_blocks:
            write_block(block, self._file, self._hash_mode, self._byte_order)
        logging.info(
            f"Wrote file headers of '{self._filename.name}' "
            f"({self._file.tell():,} bytes)."
        )

    def new_frame_set(
        self, n_frames: int | None = None, first_frame: int | None = None
    ) -> FrameSet:
        """
        Creates an empty frame set that follows the last written one.

        Parameters
        ----------
        n_frames : `int`, optional
            Number of frames. If not specified, the number of frames
            per frame set in the general information is used.

        first_frame : `int`, optional
            Frame number of the first frame. If not specified, the frame
            after the last written frame set is used.

        Returns
        -------
        frame_set : `FrameSet`
            Empty frame set.
        """

        if first_frame is None:
            first_frame = (
                0
                if self._last_frame_set is None
                else self._last_frame_set.last_frame + 1
            )
        return new_frame_set(
            first_frame,
            self.general_info.frame_set_n_frames if n_frames is None else n_frames,
        )

    def write_frame_set(self, frame_set: FrameSet) -> int:
        """
        Appends a frame set, links it to the previous one, and updates
        the general information block.

        The file headers are written first if necessary.

        Parameters
        ----------
        frame_set : `FrameSet`
            Frame set to write.

        Returns
        -------
        length : `int`
            Number of bytes written.
        """

        if not self.headers_written:
            self.write_headers()
        length = write_frame_set(
            self._file,
            frame_set,
            self._last_frame_set,
            self._hash_mode,
            self._byte_order,
            parallel=self._parallel,
            n_workers=self._n_workers,
        )
        self._last_frame_set = frame_set

        if self.general_info.first_frame_set_pos == NO_NEIGHBOR:
            self.general_info.first_frame_set_pos = frame_set.file_pos
        self.general_info.last_frame_set_pos = frame_set.file_pos
        overwrite_block(
            self.general_info.to_block(self._byte_order),
            self._file,
            self._general_info_pos,
            self._hash_mode,
            self._byte_order,
        )
        return length

    def write_frame_sets(self, frame_sets: Iterable[FrameSet]) -> int:
        """
        Appends frame sets in order and returns the number of bytes
        written.
        """

        return sum(self.write_frame_set(f) for f in frame_sets)

    def open(self) -> None:
        """
        Opens the TNG file for writing and stores a handle to it.
        """

        self._file = open(self._filename, "w+b")

    def close(self) -> None:
        """
        Writes the file headers if nothing was written, then closes the
        TNG file and deletes the handle.
        """

        if hasattr(self, "_file"):
            if not self.headers_written and not self._file.closed:
                self.write_headers()
            self._file.close()
            del self._file
