"""
Trajectory container
====================

This module contains :class:`Trajectory`, which owns an open TNG file,
its global metadata, its structural hierarchy, and the active frame set,
and sequences reads and writes across frame sets.
"""

from pathlib import Path
from types import TracebackType
from typing import Any, Self

import numpy as np

from .errors import BlockNotFoundError, ConfigurationError
from .io import NO_NEIGHBOR, DataType, HashMode
from .io.frameset import FrameSet, ParticleMapping
from .io.header import GeneralInfo
from .io.reader import TNGReader
from .io.writer import TNGWriter
from .topology import Topology


class Trajectory:
    """
    TNG trajectory.

    In write mode, frame sets are created with :meth:`frame_set_new`,
    filled with :meth:`particle_mapping_add`, :meth:`data_block_add`,
    and :meth:`particle_data_block_add`, and appended with
    :meth:`frame_set_write`. Data blocks added before the first frame set
    is created are non-trajectory blocks written with the file headers.

    In read mode, frame sets are visited with :meth:`frame_set_read_next`
    and their data retrieved with :meth:`data_get` and
    :meth:`particle_data_get`. The interval variants
    :meth:`data_interval_get` and :meth:`particle_data_interval_get` span
    multiple frame sets.

    Only one frame set is active at a time. Advancing to the next frame
    set releases the previous one.

    Parameters
    ----------
    filename : `str` or `pathlib.Path`, positional-only
        Filename or path to the TNG file.

    mode : `str`, positional-only, default: :code:`"r"`
        :code:`"r"` to read an existing file or :code:`"w"` to create a
        new one.

    topology : `Topology`, keyword-only, optional
        Structural hierarchy. Write mode only.

    n_frames_per_frame_set : `int`, keyword-only, default: :code:`100`
        Default number of frames in a frame set. Write mode only.

    medium_stride_length : `int`, keyword-only, default: :code:`100`
        Number of frame sets between medium-stride links. Write mode
        only.

    long_stride_length : `int`, keyword-only, default: :code:`10000`
        Number of frame sets between long-stride links. Write mode only.

    endianness : `str`, keyword-only, default: :code:`"little"`
        Byte order of the file. Write mode only.

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

    **kwargs
        Additional general information fields (see
        :class:`tngcraft.io.header.GeneralInfo`). Write mode only.

    Examples
    --------
    Write two frame sets of box shapes and positions:

    >>> with Trajectory("out.tng", "w", n_frames_per_frame_set=10) as traj:
    ...     for _ in range(2):
    ...         traj.frame_set_new()
    ...         traj.data_block_add(BlockID.BOX_SHAPE, DataType.DOUBLE, boxes)
    ...         traj.particle_data_block_add(
    ...             BlockID.POSITIONS, DataType.FLOAT, positions,
    ...             codec_id=CodecID.TNG
    ...         )
    ...         traj.frame_set_write()

    Read positions of frames 5 to 14, inclusive:

    >>> with Trajectory("out.tng") as traj:
    ...     positions, _ = traj.particle_data_interval_get(
    ...         BlockID.POSITIONS, 5, 14
    ...     )
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "r",
        /,
        *,
        topology: Topology | None = None,
        n_frames_per_frame_set: int = 100,
        medium_stride_length: int = 100,
        long_stride_length: int = 10000,
        endianness: str = "little",
        hash_mode: int = HashMode.USE,
        parallel: bool = False,
        n_workers: int | None = None,
        verbose: bool = False,
        **kwargs,
    ) -> None:
        if mode == "r":
            self._io = TNGReader(
                filename,
                hash_mode=hash_mode,
                parallel=parallel,
                n_workers=n_workers,
                verbose=verbose,
            )
        elif mode == "w":
            if n_frames_per_frame_set < 1:
                raise ConfigurationError(
                    "The number of frames per frame set must be positive."
                )
            general_info = GeneralInfo(
                frame_set_n_frames=n_frames_per_frame_set,
                medium_stride_length=medium_stride_length,
                long_stride_length=long_stride_length,
                **kwargs,
            )
            self._io = TNGWriter(
                filename,
                general_info=general_info,
                topology=topology,
                endianness=endianness,
                hash_mode=hash_mode,
                parallel=parallel,
                n_workers=n_workers,
                verbose=verbose,
            )
        else:
            raise ValueError(f"Invalid mode '{mode}'. Valid values: 'r', 'w'.")
        self._mode = mode
        self.frame_set = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}('{self._io.filename.name}', "
            f"'{self._mode}', hash_mode={self.hash_mode.name})"
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """
        Releases the active frame set and closes the TNG file.
        """

        self.frame_set = None
        self._io.close()

    @property
    def general_info(self) -> GeneralInfo:
        """
        Global metadata.
        """

        return self._io.general_info

    @property
    def topology(self) -> Topology | None:
        """
        Structural hierarchy.
        """

        return self._io.topology

    @property
    def hash_mode(self) -> HashMode:
        """
        Whether MD5 digests are generated on write and verified on
        read.
        """

        return self._io.hash_mode

    @property
    def time_str(self) -> str:
        """
        Date and time of initial file creation in ISO format.
        """

        return self.general_info.time_str

    @property
    def n_frames_per_frame_set(self) -> int:
        """
        Default number of frames in a frame set.
        """

        return self.general_info.frame_set_n_frames

    @property
    def medium_stride_length(self) -> int:
        """
        Number of frame sets between medium-stride links.
        """

        return self.general_info.medium_stride_length

    @property
    def long_stride_length(self) -> int:
        """
        Number of frame sets between long-stride links.
        """

        return self.general_info.long_stride_length

    @property
    def n_particles(self) -> int | None:
        """
        Number of particles in the system, or `None` if there is no
        topology or the number of particles varies.
        """

        if self.topology is None or self.general_info.var_n_atoms:
            return None
        return self.topology.n_particles

    def _require(self, mode: str) -> None:
        if self._mode != mode:
            raise ConfigurationError(
                f"This operation requires a trajectory opened in '{mode}' mode."
            )

    def _active(self) -> FrameSet:
        if self.frame_set is None:
            raise ConfigurationError("There is no active frame set.")
        return self.frame_set

    # Writing

    def frame_set_new(
        self, first_frame: int | None = None, n_frames: int | None = None
    ) -> FrameSet:
        """
        Creates a frame set and makes it the active frame set.

        Parameters
        ----------
        first_frame : `int`, optional
            Frame number of the first frame. If not specified, the frame
            after the last written frame set is used.

        n_frames : `int`, optional
            Number of frames. If not specified,
            :attr:`n_frames_per_frame_set` is used.

        Returns
        -------
        frame_set : `FrameSet`
            Active frame set.
        """

        self._require("w")
        self.frame_set = self._io.new_frame_set(n_frames, first_frame)
        return self.frame_set

    def particle_mapping_add(
        self, first_particle_number: int, mapping_table: Any
    ) -> ParticleMapping:
        """
        Adds a particle mapping table to the active frame set.

        Parameters
        ----------
        first_particle_number : `int`
            Particle number of the first entry of the mapping table.

        mapping_table : array-like
            Real particle number of each particle.

        Returns
        -------
        mapping : `ParticleMapping`
            Mapping table.
        """

        self._require("w")
        return self._active().add_particle_mapping(
            first_particle_number, mapping_table
        )

    def data_block_add(
        self, block_id: int, datatype: int, values: Any, **kwargs
    ) -> None:
        """
        Adds a non-particle-dependent data block to the active frame
        set, or a non-trajectory data block if no frame set has been
        created yet.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        datatype : `int`
            Element type of the values.

        values : array-like
            Values.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{values})`.

        **kwargs
            Keyword arguments passed to
            :meth:`tngcraft.io.frameset.FrameSet.add_data_block`.
        """

        self._require("w")
        if self.frame_set is None:
            self._io.add_data_block(block_id, datatype, values, **kwargs)
        else:
            self.frame_set.add_data_block(block_id, datatype, values, **kwargs)

    def particle_data_block_add(
        self,
        block_id: int,
        datatype: int,
        values: Any,
        first_particle_number: int = 0,
        **kwargs,
    ) -> None:
        """
        Adds a particle-dependent data block to the active frame set, or
        a non-trajectory data block if no frame set has been created
        yet.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        datatype : `int`
            Element type of the values.

        values : array-like
            Values.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`.

        first_particle_number : `int`, default: :code:`0`
            Particle number of the first particle.

        **kwargs
            Keyword arguments passed to
            :meth:`tngcraft.io.frameset.FrameSet.add_data_block`.
        """

        self.data_block_add(
            block_id,
            datatype,
            values,
            particle_dependent=True,
            first_particle_number=first_particle_number,
            **kwargs,
        )

    def frame_set_write(self) -> int:
        """
        Writes the active frame set and links it to the previous one.

        Returns
        -------
        length : `int`
            Number of bytes written.
        """

        self._require("w")
        return self._io.write_frame_set(self._active())

    # Reading

    def frame_set_read_next(self) -> FrameSet | None:
        """
        Reads the next frame set and makes it the active frame set.

        Returns
        -------
        frame_set : `FrameSet` or `None`
            Active frame set, or `None` if the end of the file was
            reached.
        """

        self._require("r")
        if self.frame_set is None:
            self.frame_set = self._io.read_first_frame_set()
        elif self.frame_set.next_frame_set_file_pos == NO_NEIGHBOR:
            self.frame_set = None
        else:
            self.frame_set = self._io.read_frame_set_at(
                self.frame_set.next_frame_set_file_pos
            )
        return self.frame_set

    def frame_set_find(self, frame: int) -> FrameSet | None:
        """
        Makes the frame set containing a frame the active frame set.

        Parameters
        ----------
        frame : `int`
            Frame number.

        Returns
        -------
        frame_set : `FrameSet` or `None`
            Active frame set, or `None` if no frame set contains
            `frame`, in which case the active frame set is unchanged.
        """

        self._require("r")
        frame_set = self._io.find_frame_set(frame, self.frame_set)
        if frame_set is not None:
            self.frame_set = frame_set
        return frame_set

    def data_get(self, block_id: int) -> tuple[np.ndarray, DataType]:
        """
        Retrieves non-particle-dependent data from the active frame set,
        or from the non-trajectory data blocks.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        Returns
        -------
        values : `numpy.ndarray`
            Values.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{values})`.

        datatype : `DataType`
            Element type of the values.
        """

        if self.frame_set is not None and block_id in self.frame_set.block_ids:
            return self.frame_set.get_data(block_id)
        return self._io.non_trajectory.get_data(block_id)

    def particle_data_get(self, block_id: int) -> tuple[np.ndarray, DataType]:
        """
        Retrieves particle-dependent data in real particle numbering from
        the active frame set, or from the non-trajectory data blocks.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        Returns
        -------
        values : `numpy.ndarray`
            Values, indexed by real particle number along the second
            axis.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`.

        datatype : `DataType`
            Element type of the values.
        """

        if self.frame_set is not None and block_id in self.frame_set.block_ids:
            return self.frame_set.get_particle_data(block_id, self.n_particles)
        return self._io.non_trajectory.get_particle_data(block_id, self.n_particles)

    def _interval(
        self,
        block_id: int,
        start_frame: int,
        end_frame: int,
        get: str,
    ) -> tuple[list[np.ndarray], DataType]:
        self._require("r")
        if not 0 <= start_frame <= end_frame:
            raise ConfigurationError(
                f"Invalid frame interval [{start_frame}, {end_frame}]."
            )
        frame_set = self._io.find_frame_set(start_frame, self.frame_set)
        if frame_set is None:
            # Interval starts before the first frame set or between two
            frame_set = self._io.read_first_frame_set()
            while frame_set is not None and frame_set.last_frame < start_frame:
                if frame_set.next_frame_set_file_pos == NO_NEIGHBOR:
                    frame_set = None
                else:
                    frame_set = self._io.read_frame_set_at(
                        frame_set.next_frame_set_file_pos
                    )
        chunks = []
        datatype = None
        while frame_set is not None and frame_set.first_frame <= end_frame:
            if block_id in frame_set.block_ids:
                if get == "particle":
                    values, datatype = frame_set.get_particle_data(
                        block_id, self.n_particles
                    )
                else:
                    values, datatype = frame_set.get_data(block_id)
                frames = frame_set.data_blocks(block_id)[0].sample_frames
                chunks.append(values[(frames >= start_frame) & (frames <= end_frame)])
            if frame_set.next_frame_set_file_pos == NO_NEIGHBOR:
                break
            frame_set = self._io.read_frame_set_at(frame_set.next_frame_set_file_pos)
        if datatype is None:
            raise BlockNotFoundError(
                f"No block with ID {block_id} covers frames {start_frame}-"
                f"{end_frame}.",
                block_id=block_id,
            )
        return chunks, datatype

    def data_interval_get(
        self, block_id: int, start_frame: int, end_frame: int
    ) -> tuple[np.ndarray, DataType]:
        """
        Retrieves non-particle-dependent data stored for frames in an
        interval, which may span multiple frame sets.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        start_frame : `int`
            First frame of the interval (inclusive).

        end_frame : `int`
            Last frame of the interval (inclusive).

        Returns
        -------
        values : `numpy.ndarray`
            Values of the stored samples whose frame numbers lie in the
            interval.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{values})`.

        datatype : `DataType`
            Element type of the values.
        """

        chunks, datatype = self._interval(block_id, start_frame, end_frame, "data")
        return np.concatenate(chunks), datatype

    def particle_data_interval_get(
        self,
        block_id: int,
        start_frame: int,
        end_frame: int,
        first_particle: int = 0,
        last_particle: int | None = None,
    ) -> tuple[np.ndarray, DataType]:
        """
        Retrieves particle-dependent data stored for frames and real
        particle numbers in intervals. The frame interval may span
        multiple frame sets.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        start_frame : `int`
            First frame of the interval (inclusive).

        end_frame : `int`
            Last frame of the interval (inclusive).

        first_particle : `int`, default: :code:`0`
            First real particle number (inclusive).

        last_particle : `int`, optional
            Last real particle number (inclusive). If not specified,
            the last particle with data is used.

        Returns
        -------
        values : `numpy.ndarray`
            Values of the stored samples whose frame numbers lie in the
            interval.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`.

        datatype : `DataType`
            Element type of the values.
        """

        chunks, datatype = self._interval(block_id, start_frame, end_frame, "particle")
        n_particles = min(c.shape[1] for c in chunks)
        if last_particle is None:
            last_particle = n_particles - 1
        if not 0 <= first_particle <= last_particle < n_particles:
            raise ConfigurationError(
                f"Invalid particle interval [{first_particle}, {last_particle}] "
                f"for {n_particles} particles."
            )
        return (
            np.concatenate([c[:, first_particle : last_particle + 1] for c in chunks]),
            datatype,
        )
