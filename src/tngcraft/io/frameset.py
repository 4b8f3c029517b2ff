"""
Frame sets
==========

This module contains the frame set, the atomic I/O granule of a TNG
file, together with the particle mapping tables and data blocks it
owns.

A frame set is serialized as

* the frame set block (first frame, number of frames, and the file
  positions of the next and previous frame sets),
* the table of contents block (number of mapping blocks and the name,
  relative offset, length, and particle range of every data block),
* one particle mapping block per mapping table, and
* the data blocks.

The next and previous file positions form a doubly linked list through
the file. :data:`tngcraft.io.NO_NEIGHBOR` marks a missing neighbor.
"""

import concurrent.futures
import logging
from math import prod
from typing import Any, BinaryIO
import warnings

import numpy as np
import psutil

from . import (
    BLOCK_UNITS,
    DTYPES,
    NO_NEIGHBOR,
    STRUCTURAL_BLOCK_IDS,
    BlockID,
    BlockType,
    CodecID,
    DataType,
    Dependency,
    HashMode,
)
from .block import (
    Block,
    PayloadBuilder,
    PayloadParser,
    encode_string,
    overwrite_block,
    read_block,
)
from ..compression import Algorithm, codec
from ..compression.transform import PrecisionTransform
from ..errors import (
    BlockNotFoundError,
    CodecError,
    ConfigurationError,
    MalformedPayloadError,
)

# Quantization step used when none is specified
DEFAULT_PRECISION = 0.001


def n_samples(n_frames: int, stride_length: int) -> int:
    """
    Number of stored samples for `n_frames` frames written every
    `stride_length` frames.
    """

    return -(-n_frames // stride_length)


class ParticleMapping:
    """
    Translation from the particle numbers used in data blocks to the
    real particle numbers of the molecular system.

    Parameters
    ----------
    first_particle_number : `int`
        Particle number, as used in the data blocks, of the first entry
        of the mapping table.

    mapping_table : array-like
        Real particle number of each particle in
        :math:`[\\mathrm{first},\\,\\mathrm{first}+n)`.

    Examples
    --------
    >>> mapping = ParticleMapping(100, [7, 3, 9, 1, 5])
    >>> mapping.real(102)
    9
    """

    def __init__(self, first_particle_number: int, mapping_table: Any) -> None:
        table = np.array(mapping_table, dtype=np.int64)
        if first_particle_number < 0:
            raise ConfigurationError(
                f"Invalid first particle number {first_particle_number}."
            )
        if table.ndim != 1 or table.shape[0] == 0:
            raise ConfigurationError(
                "The mapping table must be a non-empty one-dimensional array."
            )
        if table.min() < 0 or np.unique(table).shape[0] != table.shape[0]:
            raise ConfigurationError(
                "The mapping table must contain distinct non-negative real "
                "particle numbers."
            )
        self.first_particle_number = int(first_particle_number)
        self.mapping_table = table

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.first_particle_number}, "
            f"n_particles={self.n_particles})"
        )

    def covers(self, first_particle_number: int, n_particles: int) -> bool:
        """
        Whether the particle range lies inside this mapping table.
        """

        return (
            self.first_particle_number <= first_particle_number
            and first_particle_number + n_particles <= self.end
        )

    def overlaps(self, first_particle_number: int, n_particles: int) -> bool:
        """
        Whether the particle range shares a particle with this mapping
        table.
        """

        return (
            first_particle_number < self.end
            and self.first_particle_number < first_particle_number + n_particles
        )

    def real(self, particle_numbers: int | np.ndarray[int]) -> int | np.ndarray[int]:
        """
        Translates particle numbers to real particle numbers.

        Parameters
        ----------
        particle_numbers : `int` or `numpy.ndarray`
            Particle numbers covered by this mapping table.

        Returns
        -------
        real_particle_numbers : `int` or `numpy.ndarray`
            Real particle numbers.
        """

        real = self.mapping_table[
            np.asarray(particle_numbers) - self.first_particle_number
        ]
        return int(real) if np.ndim(real) == 0 else real

    @property
    def end(self) -> int:
        """
        First particle number after this mapping table.
        """

        return self.first_particle_number + self.n_particles

    @property
    def n_particles(self) -> int:
        """
        Number of particles in this mapping table.
        """

        return self.mapping_table.shape[0]

    def to_block(self, byte_order: str = "<") -> Block:
        payload = (
            PayloadBuilder(byte_order)
            .int64(self.first_particle_number)
            .int64(self.n_particles)
            .array(self.mapping_table, "i8")
            .getvalue()
        )
        return Block(BlockID.PARTICLE_MAPPING, payload)

    @classmethod
    def from_block(cls, block: Block, byte_order: str = "<") -> "ParticleMapping":
        parser = PayloadParser(block.payload, byte_order, block.block_id)
        first_particle_number, n_particles = parser.int64(), parser.int64()
        try:
            return cls(first_particle_number, parser.array("i8", n_particles))
        except ConfigurationError as error:
            raise MalformedPayloadError(str(error), block_id=block.block_id) from None


class DataBlock:
    """
    Particle-dependent or non-particle-dependent data block.

    Values are stored as an array with shape
    :math:`(N_\\mathrm{samples},\\,N_\\mathrm{values})` for
    non-particle-dependent data and
    :math:`(N_\\mathrm{samples},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`
    for particle-dependent data, where
    :math:`N_\\mathrm{samples}=\\lceil N_\\mathrm{frames}/s\\rceil` for
    stride length :math:`s`.

    Instances are normally created through
    :meth:`FrameSet.add_data_block`, which validates the parameters.

    Parameters
    ----------
    block_id : `int`
        Block ID.

    name : `str`
        Block name.

    datatype : `int`
        Element type of the values.

    values : `numpy.ndarray`
        Values.

    first_frame : `int`
        Frame number of the first sample.

    n_frames : `int`
        Number of frames covered by the block.

    stride_length : `int`
        Number of frames between stored samples.

    codec_id : `int`
        Compression applied to the values.

    first_particle_number : `int`, optional
        Particle number of the first particle. Only for
        particle-dependent blocks.

    precision : `float`, optional
        Quantization step used by the XTC and TNG codecs for
        floating-point values.

    block_type : `int`, default: :code:`BlockType.TRAJECTORY`
        Block type flag.
    """

    def __init__(
        self,
        block_id: int,
        name: str,
        datatype: int,
        values: np.ndarray,
        first_frame: int,
        n_frames: int,
        stride_length: int,
        codec_id: int,
        first_particle_number: int | None = None,
        precision: float | None = None,
        block_type: int = BlockType.TRAJECTORY,
    ) -> None:
        self.block_id = int(block_id)
        self.name = name
        self.datatype = DataType(datatype)
        self.values = values
        self.first_frame = first_frame
        self.n_frames = n_frames
        self.stride_length = stride_length
        self.codec_id = CodecID(codec_id)
        self.first_particle_number = first_particle_number
        self.precision = precision
        self.block_type = BlockType(block_type)
        self.algorithm = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.block_id}, name={self.name!r}, "
            f"datatype={self.datatype.name}, shape={self.values.shape}, "
            f"stride_length={self.stride_length}, codec_id={self.codec_id.name})"
        )

    @property
    def particle_dependent(self) -> bool:
        """
        Whether the block stores values per particle.
        """

        return self.first_particle_number is not None

    @property
    def n_particles(self) -> int | None:
        """
        Number of particles, or `None` for non-particle-dependent
        blocks.
        """

        return self.values.shape[1] if self.particle_dependent else None

    @property
    def n_values_per_frame(self) -> int:
        """
        Number of values stored per frame (and particle).
        """

        return self.values.shape[-1]

    @property
    def n_samples(self) -> int:
        """
        Number of stored samples.
        """

        return n_samples(self.n_frames, self.stride_length)

    @property
    def sample_frames(self) -> np.ndarray[int]:
        """
        Frame numbers of the stored samples.
        """

        return self.first_frame + self.stride_length * np.arange(self.n_samples)

    def _encode_values(self, builder: PayloadBuilder, byte_order: str) -> None:
        if self.datatype == DataType.CHAR:
            for value in self.values.ravel():
                builder.string(value)
            return
        if self.codec_id == CodecID.UNCOMPRESSED:
            builder.array(self.values, DTYPES[self.datatype].str[1:])
            return

        values = self.values
        if self.datatype != DataType.INT:
            values = PrecisionTransform(self.precision).forward(values)
        bitstream, metadata = codec.encode(
            values,
            Algorithm.FIXED_WIDTH if self.codec_id == CodecID.XTC else codec.BEST,
        )
        self.algorithm = metadata["algorithm"]
        data = codec.serialize(bitstream, metadata, byte_order)
        logging.info(
            f"Compressed block '{self.name}' with the {self.algorithm.name} "
            f"algorithm ({self.values.nbytes:,} to {len(data):,} bytes)."
        )
        builder.raw(data)

    def to_block(self, byte_order: str = "<") -> Block:
        """
        Serializes the data block.

        Parameters
        ----------
        byte_order : `str`, default: :code:`"<"`
            :code:`"<"` for little-endian or :code:`">"` for big-endian
            integers.

        Returns
        -------
        block : `Block`
            Block holding the encoded values.
        """

        dependency = (
            Dependency.PARTICLE_DEPENDENT * self.particle_dependent
            | Dependency.FRAME_DEPENDENT * (self.block_type == BlockType.TRAJECTORY)
        )
        builder = (
            PayloadBuilder(byte_order)
            .uint8(self.datatype)
            .uint8(dependency)
            .uint8(self.codec_id)
            .int64(self.first_frame)
            .int64(self.n_frames)
            .int64(self.n_values_per_frame)
            .int64(self.stride_length)
        )
        if self.particle_dependent:
            builder.int64(self.first_particle_number).int64(self.n_particles)
        builder.float64(self.precision or 0.0)
        self._encode_values(builder, byte_order)
        return Block(
            self.block_id,
            builder.getvalue(),
            name=self.name,
            block_type=self.block_type,
        )

    @classmethod
    def from_block(cls, block: Block, byte_order: str = "<") -> "DataBlock":
        """
        Deserializes a data block.

        Parameters
        ----------
        block : `Block`
            Block holding the encoded values.

        byte_order : `str`, default: :code:`"<"`
            :code:`"<"` for little-endian or :code:`">"` for big-endian
            integers.

        Returns
        -------
        data_block : `DataBlock`
            Data block with decoded values.
        """

        parser = PayloadParser(block.payload, byte_order, block.block_id)
        try:
            datatype = DataType(parser.uint8())
            dependency = parser.uint8()
            codec_id = CodecID(parser.uint8())
        except ValueError as error:
            raise MalformedPayloadError(
                f"Invalid data block header: {error}", block_id=block.block_id
            ) from None
        first_frame, n_frames = parser.int64(), parser.int64()
        n_values_per_frame, stride_length = parser.int64(), parser.int64()
        first_particle_number = None
        shape = (n_samples(n_frames, max(stride_length, 1)), n_values_per_frame)
        if dependency & Dependency.PARTICLE_DEPENDENT:
            first_particle_number, n_particles = parser.int64(), parser.int64()
            shape = (shape[0], n_particles, n_values_per_frame)
        precision = parser.float64() or None
        if min(shape) < 0 or stride_length < 1 or n_frames < 1:
            raise MalformedPayloadError(
                "Invalid data block dimensions.", block_id=block.block_id
            )

        count = prod(shape)
        if datatype == DataType.CHAR:
            values = np.array([parser.string() for _ in range(count)], dtype=object)
        elif codec_id == CodecID.UNCOMPRESSED:
            values = parser.array(DTYPES[datatype].str[1:], count)
        else:
            bitstream, metadata, _ = codec.deserialize(parser.raw(), byte_order)
            n_stored = prod(metadata["shape"])
            if n_stored != count:
                raise MalformedPayloadError(
                    f"Block '{block.name}' declares {count} values but holds "
                    f"{n_stored}.",
                    block_id=block.block_id,
                )
            values = codec.decode(bitstream, metadata, count)
            if datatype != DataType.INT:
                if precision is None:
                    raise MalformedPayloadError(
                        f"Block '{block.name}' has no precision.",
                        block_id=block.block_id,
                    )
                values = PrecisionTransform(precision).inverse(
                    values, DTYPES[datatype]
                )
        data_block = cls(
            block.block_id,
            block.name,
            datatype,
            values.reshape(shape),
            first_frame,
            n_frames,
            stride_length,
            codec_id,
            first_particle_number,
            precision,
            block.block_type,
        )
        if codec_id != CodecID.UNCOMPRESSED and datatype != DataType.CHAR:
            data_block.algorithm = Algorithm(metadata["algorithm"])
        return data_block


class TOCEntry:
    """
    Table of contents entry describing one data block of a frame set.

    Offsets are relative to the start of the frame set block.
    """

    def __init__(
        self,
        block_id: int,
        name: str,
        first_particle_number: int | None = None,
        n_particles: int = 0,
        offset: int | None = None,
        length: int | None = None,
    ) -> None:
        self.block_id = block_id
        self.name = name
        self.first_particle_number = first_particle_number
        self.n_particles = n_particles
        self.offset = offset
        self.length = length

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.block_id}, name={self.name!r}, "
            f"offset={self.offset}, length={self.length})"
        )

    @property
    def particle_dependent(self) -> bool:
        return self.first_particle_number is not None


class FrameSet:
    """
    Fixed-size contiguous run of frames and the data blocks covering
    them.

    Parameters
    ----------
    first_frame : `int`
        Frame number of the first frame.

    n_frames : `int`
        Number of frames.
    """

    def __init__(self, first_frame: int, n_frames: int) -> None:
        if first_frame < 0:
            raise ConfigurationError(f"Invalid first frame {first_frame}.")
        if n_frames < 1:
            raise ConfigurationError(
                f"A frame set must contain at least one frame, not {n_frames}."
            )
        self.first_frame = int(first_frame)
        self.n_frames = int(n_frames)
        self.next_frame_set_file_pos = NO_NEIGHBOR
        self.prev_frame_set_file_pos = NO_NEIGHBOR
        self.file_pos = None
        self.mappings = []
        self._entries = []
        self._blocks = []
        self._source = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(first_frame={self.first_frame}, "
            f"n_frames={self.n_frames}, n_blocks={len(self._entries)})"
        )

    @property
    def last_frame(self) -> int:
        """
        Frame number of the last frame.
        """

        return self.first_frame + self.n_frames - 1

    @property
    def block_ids(self) -> list[int]:
        """
        Distinct data block IDs, in directory order.
        """

        return list(dict.fromkeys(e.block_id for e in self._entries))

    @property
    def table_of_contents(self) -> list[TOCEntry]:
        """
        Directory of the data blocks.
        """

        return list(self._entries)

    def add_particle_mapping(
        self, first_particle_number: int, mapping_table: Any
    ) -> ParticleMapping:
        """
        Adds a particle mapping table.

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

        mapping = ParticleMapping(first_particle_number, mapping_table)
        for other in self.mappings:
            if other.overlaps(mapping.first_particle_number, mapping.n_particles):
                raise ConfigurationError(
                    f"Mapping table for particles {mapping.first_particle_number}"
                    f"-{mapping.end - 1} overlaps an existing mapping table."
                )
            if np.intersect1d(other.mapping_table, mapping.mapping_table).size:
                raise ConfigurationError(
                    "Mapping tables in a frame set cannot share real particle "
                    "numbers."
                )
        self.mappings.append(mapping)
        return mapping

    def _validate_values(
        self,
        values: Any,
        datatype: DataType,
        name: str,
    ) -> np.ndarray:
        values = np.asarray(values)
        if datatype == DataType.CHAR:
            if values.dtype.kind not in "OU" or not all(
                isinstance(v, str) for v in values.ravel()
            ):
                raise ConfigurationError(
                    f"Values of the character block '{name}' must be strings."
                )
            for value in values.ravel():
                encode_string(value)
            return np.array(values, dtype=object)
        kinds = "iu" if datatype == DataType.INT else "f"
        if values.dtype.kind not in kinds:
            raise ConfigurationError(
                f"Values of type '{values.dtype}' do not match the "
                f"{datatype.name} datatype of block '{name}'."
            )
        return np.array(values, dtype=DTYPES[datatype])

    def add_data_block(
        self,
        block_id: int,
        datatype: int,
        values: Any,
        *,
        name: str | None = None,
        particle_dependent: bool = False,
        n_frames: int | None = None,
        n_values_per_frame: int | None = None,
        stride_length: int = 1,
        first_particle_number: int = 0,
        n_particles: int | None = None,
        codec_id: int = CodecID.UNCOMPRESSED,
        precision: Any = None,
    ) -> DataBlock:
        """
        Adds a data block after validating it against the frame set.

        Nothing is modified if validation fails.

        Parameters
        ----------
        block_id : `int`
            Block ID. Structural block IDs are not allowed.

        datatype : `int`
            Element type of the values.

        values : array-like
            Values, with shape
            :math:`(N_\\mathrm{samples},\\,N_\\mathrm{values})` or, for
            particle-dependent blocks,
            :math:`(N_\\mathrm{samples},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`.

        name : `str`, keyword-only, optional
            Block name. Defaults to the name of the predefined block ID.

        particle_dependent : `bool`, keyword-only, default: :code:`False`
            Whether values are stored per particle.

        n_frames : `int`, keyword-only, optional
            Number of frames covered, starting at the first frame of the
            frame set. Defaults to the number of frames in the frame
            set.

        n_values_per_frame : `int`, keyword-only, optional
            Number of values per frame (and particle). Defaults to the
            size of the last axis of `values`.

        stride_length : `int`, keyword-only, default: :code:`1`
            Number of frames between stored samples.

        first_particle_number : `int`, keyword-only, default: :code:`0`
            Particle number of the first particle. Only for
            particle-dependent blocks.

        n_particles : `int`, keyword-only, optional
            Number of particles. Defaults to the size of the second
            axis of `values`.

        codec_id : `int`, keyword-only, default: :code:`CodecID.UNCOMPRESSED`
            Compression applied to the values.

        precision : `float` or `pint.Quantity`, keyword-only, optional
            Quantization step for floating-point values compressed with
            the XTC or TNG codecs. Defaults to :code:`0.001` in internal
            units.

        Returns
        -------
        data_block : `DataBlock`
            New data block.
        """

        if block_id in STRUCTURAL_BLOCK_IDS:
            raise ConfigurationError(
                f"Block ID {block_id} is reserved for structural blocks."
            )
        try:
            datatype = DataType(datatype)
            codec_id = CodecID(codec_id)
        except ValueError as error:
            raise ConfigurationError(str(error)) from None
        if name is None:
            name = Block(block_id).name or f"data block {block_id}"
        if datatype == DataType.CHAR and codec_id != CodecID.UNCOMPRESSED:
            raise ConfigurationError(
                f"Character block '{name}' cannot be compressed."
            )

        # Frame range and stride
        n_frames = self.n_frames if n_frames is None else n_frames
        if not 1 <= n_frames <= self.n_frames:
            raise ConfigurationError(
                f"Block '{name}' covers {n_frames} frames, but the frame set "
                f"has {self.n_frames}."
            )
        if not 1 <= stride_length <= self.n_frames:
            raise ConfigurationError(
                f"Invalid stride length {stride_length} for block '{name}' in "
                f"a frame set of {self.n_frames} frames."
            )

        # Values and their shape
        values = self._validate_values(values, datatype, name)
        if values.ndim != (3 if particle_dependent else 2):
            raise ConfigurationError(
                f"Values of block '{name}' must be a "
                f"{3 if particle_dependent else 2}-dimensional array."
            )
        if n_values_per_frame is None:
            n_values_per_frame = values.shape[-1]
        shape = (n_samples(n_frames, stride_length), n_values_per_frame)
        if particle_dependent:
            if n_particles is None:
                n_particles = values.shape[1]
            shape = (shape[0], n_particles, n_values_per_frame)
        if values.shape != shape:
            raise ConfigurationError(
                f"Values of block '{name}' have shape {values.shape}, but "
                f"{n_frames} frames with a stride length of {stride_length} "
                f"require shape {shape}."
            )

        # Particle range against mapping tables and sibling blocks
        if particle_dependent:
            if first_particle_number < 0 or n_particles < 1:
                raise ConfigurationError(
                    f"Invalid particle range for block '{name}'."
                )
            if self.mappings and not any(
                m.covers(first_particle_number, n_particles) for m in self.mappings
            ):
                raise ConfigurationError(
                    f"Particles {first_particle_number}-"
                    f"{first_particle_number + n_particles - 1} of block "
                    f"'{name}' are not covered by a single mapping table."
                )
        for entry, block in zip(self._entries, self._blocks):
            if entry.block_id != block_id:
                continue
            if not particle_dependent or not entry.particle_dependent:
                raise ConfigurationError(
                    f"The frame set already contains block {block_id}."
                )
            if (
                first_particle_number < entry.first_particle_number + entry.n_particles
                and entry.first_particle_number < first_particle_number + n_particles
            ):
                raise ConfigurationError(
                    f"Particles of block '{name}' overlap those of an existing "
                    f"block with ID {block_id}."
                )
            if block is not None and (
                block.datatype != datatype
                or block.n_frames != n_frames
                or block.stride_length != stride_length
                or block.n_values_per_frame != n_values_per_frame
            ):
                raise ConfigurationError(
                    f"Block '{name}' is inconsistent with the existing blocks "
                    f"with ID {block_id}."
                )

        # Quantization step
        if datatype in (DataType.FLOAT, DataType.DOUBLE) and (
            codec_id != CodecID.UNCOMPRESSED
        ):
            try:
                transform = PrecisionTransform(
                    DEFAULT_PRECISION if precision is None else precision,
                    BLOCK_UNITS.get(block_id),
                )
            except ValueError as error:
                raise ConfigurationError(str(error)) from None
            precision = transform.precision
            try:
                transform.forward(values)
            except CodecError as error:
                raise ConfigurationError(
                    f"Values of block '{name}' cannot be compressed: {error}"
                ) from None
        else:
            precision = None

        block = DataBlock(
            block_id,
            name,
            datatype,
            values,
            self.first_frame,
            n_frames,
            stride_length,
            codec_id,
            first_particle_number if particle_dependent else None,
            precision,
        )
        self.attach_data_block(block)
        return block

    def attach_data_block(self, block: DataBlock) -> None:
        """
        Adds a data block without validating it, e.g., one that was
        read from a file.
        """

        self._entries.append(
            TOCEntry(
                block.block_id,
                block.name,
                block.first_particle_number,
                block.n_particles or 0,
            )
        )
        self._blocks.append(block)

    def _read_payload(self, index: int) -> Block:
        file, hash_mode, byte_order = self._source
        entry = self._entries[index]
        position = self.file_pos + entry.offset
        current = file.tell()
        file.seek(position)
        try:
            block = read_block(file, hash_mode, byte_order)
        finally:
            file.seek(current)
        if block is None or block.block_id != entry.block_id:
            raise MalformedPayloadError(
                f"The table of contents does not match the block at byte "
                f"{position}.",
                block_id=entry.block_id,
                position=position,
            )
        return block

    def _load(self, index: int) -> DataBlock:
        if self._blocks[index] is None:
            self._blocks[index] = DataBlock.from_block(
                self._read_payload(index), self._source[2]
            )
        return self._blocks[index]

    def load(self, *, parallel: bool = False, n_workers: int | None = None) -> None:
        """
        Reads and decodes every data block that has not been loaded yet.

        Parameters
        ----------
        parallel : `bool`, keyword-only, default: :code:`False`
            Determines whether the payloads are decoded in parallel.
            The payloads themselves are always read sequentially.

        n_workers : `int`, keyword-only, optional
            Number of threads to use when decoding in parallel. If not
            specified, the number of logical threads available is used.
        """

        missing = [i for i, b in enumerate(self._blocks) if b is None]
        if not missing:
            return
        byte_order = self._source[2]
        blocks = [self._read_payload(i) for i in missing]
        if parallel and len(blocks) > 1:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=n_workers or psutil.cpu_count()
            ) as executor:
                decoded = list(
                    executor.map(lambda b: DataBlock.from_block(b, byte_order), blocks)
                )
        else:
            decoded = [DataBlock.from_block(b, byte_order) for b in blocks]
        for i, data_block in zip(missing, decoded):
            self._blocks[i] = data_block

    def data_blocks(self, block_id: int | None = None) -> list[DataBlock]:
        """
        Data blocks, loading their payloads if necessary.

        Parameters
        ----------
        block_id : `int`, optional
            Only return blocks with this ID.

        Returns
        -------
        data_blocks : `list`
            Data blocks in directory order.
        """

        return [
            self._load(i)
            for i, entry in enumerate(self._entries)
            if block_id is None or entry.block_id == block_id
        ]

    def real_particle_numbers(
        self, first_particle_number: int, n_particles: int
    ) -> np.ndarray[int]:
        """
        Translates a particle range to real particle numbers using the
        mapping tables. Without mapping tables, particle numbers are
        real particle numbers.
        """

        if not self.mappings:
            return first_particle_number + np.arange(n_particles)
        for mapping in self.mappings:
            if mapping.covers(first_particle_number, n_particles):
                return mapping.real(
                    first_particle_number + np.arange(n_particles)
                )
        raise MalformedPayloadError(
            f"Particles {first_particle_number}-"
            f"{first_particle_number + n_particles - 1} are not covered by a "
            "mapping table."
        )

    def get_data(self, block_id: int) -> tuple[np.ndarray, DataType]:
        """
        Retrieves non-particle-dependent data.

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

        blocks = self.data_blocks(block_id)
        if not blocks or blocks[0].particle_dependent:
            raise BlockNotFoundError(
                f"No non-particle-dependent block with ID {block_id} in the "
                f"frame set starting at frame {self.first_frame}.",
                block_id=block_id,
            )
        return blocks[0].values.copy(), blocks[0].datatype

    def get_particle_data(
        self, block_id: int, n_particles: int | None = None
    ) -> tuple[np.ndarray, DataType]:
        """
        Retrieves particle-dependent data in real particle numbering.

        Particles without data are filled with :code:`NaN` for
        floating-point data, :code:`0` for integer data, and empty
        strings for character data.

        Parameters
        ----------
        block_id : `int`
            Block ID.

        n_particles : `int`, optional
            Number of particles in the system. Defaults to the largest
            real particle number with data plus one.

        Returns
        -------
        values : `numpy.ndarray`
            Values, indexed by real particle number along the second
            axis.

            **Shape**: :math:`(N_\\mathrm{samples},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`.

        datatype : `DataType`
            Element type of the values.
        """

        blocks = self.data_blocks(block_id)
        if not blocks or not blocks[0].particle_dependent:
            raise BlockNotFoundError(
                f"No particle-dependent block with ID {block_id} in the frame "
                f"set starting at frame {self.first_frame}.",
                block_id=block_id,
            )
        reals = [
            self.real_particle_numbers(b.first_particle_number, b.n_particles)
            for b in blocks
        ]
        n_real = max(r.max() for r in reals) + 1
        if n_particles is None:
            n_particles = n_real
        elif n_particles < n_real:
            raise ConfigurationError(
                f"Block {block_id} holds data for real particle {n_real - 1}, "
                f"but the system has {n_particles} particles."
            )

        first = blocks[0]
        datatype = first.datatype
        if datatype == DataType.CHAR:
            fill = ""
        elif datatype == DataType.INT:
            fill = 0
        else:
            fill = np.nan
        values = np.full(
            (first.n_samples, n_particles, first.n_values_per_frame),
            fill,
            dtype=DTYPES[datatype],
        )
        for block, real in zip(blocks, reals):
            values[:, real] = block.values
        return values, datatype

    def header_block(self, byte_order: str = "<") -> Block:
        """
        Creates the frame set block.
        """

        payload = (
            PayloadBuilder(byte_order)
            .int64(self.first_frame)
            .int64(self.n_frames)
            .int64(self.next_frame_set_file_pos)
            .int64(self.prev_frame_set_file_pos)
            .getvalue()
        )
        return Block(BlockID.TRAJECTORY_FRAME_SET, payload)

    def _toc_block(self, byte_order: str) -> Block:
        builder = PayloadBuilder(byte_order)
        builder.int64(len(self.mappings)).int64(len(self._entries))
        for entry in self._entries:
            builder.int64(entry.block_id).string(entry.name)
            builder.int64(entry.offset or 0).int64(entry.length or 0)
            if entry.particle_dependent:
                builder.int64(entry.first_particle_number)
            else:
                builder.int64(-1)
            builder.int64(entry.n_particles)
        return Block(BlockID.BLOCK_TABLE_OF_CONTENTS, builder.getvalue())

    def to_bytes(
        self,
        hash_mode: int = HashMode.USE,
        byte_order: str = "<",
        *,
        parallel: bool = False,
        n_workers: int | None = None,
    ) -> bytes:
        """
        Serializes the frame set, its table of contents, mapping
        tables, and data blocks.

        Parameters
        ----------
        hash_mode : `int`, default: :code:`HashMode.USE`
            Whether MD5 digests are generated.

        byte_order : `str`, default: :code:`"<"`
            :code:`"<"` for little-endian or :code:`">"` for big-endian
            integers.

        parallel : `bool`, keyword-only, default: :code:`False`
            Determines whether the data blocks are encoded in parallel.

        n_workers : `int`, keyword-only, optional
            Number of threads to use when encoding in parallel. If not
            specified, the number of logical threads available is used.

        Returns
        -------
        data : `bytes`
            Serialized frame set.
        """

        def serialize(block: DataBlock) -> bytes:
            return block.to_block(byte_order).to_bytes(hash_mode, byte_order)

        blocks = self.data_blocks()
        if parallel and len(blocks) > 1:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=n_workers or psutil.cpu_count()
            ) as executor:
                data = list(executor.map(serialize, blocks))
        else:
            data = [serialize(b) for b in blocks]
        mappings = [
            m.to_block(byte_order).to_bytes(hash_mode, byte_order)
            for m in self.mappings
        ]
        header = self.header_block(byte_order).to_bytes(hash_mode, byte_order)

        # Offsets and lengths do not change the size of the table of
        # contents
        offset = (
            len(header)
            + len(self._toc_block(byte_order).to_bytes(hash_mode, byte_order))
            + sum(len(m) for m in mappings)
        )
        for entry, block_data in zip(self._entries, data):
            entry.offset = offset
            entry.length = len(block_data)
            offset += len(block_data)
        toc = self._toc_block(byte_order).to_bytes(hash_mode, byte_order)
        return b"".join([header, toc, *mappings, *data])


def new_frame_set(first_frame: int, n_frames: int) -> FrameSet:
    """
    Creates an empty frame set that is not yet linked to any neighbor.

    Parameters
    ----------
    first_frame : `int`
        Frame number of the first frame.

    n_frames : `int`
        Number of frames.

    Returns
    -------
    frame_set : `FrameSet`
        Empty frame set.
    """

    return FrameSet(first_frame, n_frames)


def write_frame_set(
    file: BinaryIO,
    frame_set: FrameSet,
    previous: FrameSet | None = None,
    hash_mode: int = HashMode.USE,
    byte_order: str = "<",
    *,
    parallel: bool = False,
    n_workers: int | None = None,
) -> int:
    """
    Appends a frame set to a stream and links it to the previous frame
    set.

    The frame set is fully serialized in memory before anything is
    written. If writing fails, the stream is truncated back to its
    previous end.

    Parameters
    ----------
    file : `io.BufferedIOBase`
        Binary stream opened for reading and writing.

    frame_set : `FrameSet`
        Frame set to write.

    previous : `FrameSet`, optional
        Previously written frame set, whose next frame set file
        position is updated to point to `frame_set`.

    hash_mode : `int`, default: :code:`HashMode.USE`
        Whether MD5 digests are generated.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    parallel : `bool`, keyword-only, default: :code:`False`
        Determines whether the data blocks are encoded in parallel.

    n_workers : `int`, keyword-only, optional
        Number of threads to use when encoding in parallel.

    Returns
    -------
    length : `int`
        Number of bytes written.
    """

    if previous is not None:
        if previous.file_pos is None:
            raise ConfigurationError("The previous frame set has not been written.")
        if previous.last_frame + 1 != frame_set.first_frame:
            raise ConfigurationError(
                f"The frame set starting at frame {frame_set.first_frame} does "
                f"not follow the previous frame set, which ends at frame "
                f"{previous.last_frame}."
            )
    frame_set.prev_frame_set_file_pos = (
        NO_NEIGHBOR if previous is None else previous.file_pos
    )
    frame_set.next_frame_set_file_pos = NO_NEIGHBOR
    data = frame_set.to_bytes(
        hash_mode, byte_order, parallel=parallel, n_workers=n_workers
    )

    position = file.seek(0, 2)
    try:
        file.write(data)
    except OSError:
        file.truncate(position)
        file.seek(position)
        raise
    frame_set.file_pos = position

    if previous is not None:
        previous.next_frame_set_file_pos = position
        overwrite_block(
            previous.header_block(byte_order),
            file,
            previous.file_pos,
            hash_mode,
            byte_order,
        )
    logging.info(
        f"Wrote frame set with frames {frame_set.first_frame}-"
        f"{frame_set.last_frame} ({len(data):,} bytes) at byte {position:,}."
    )
    return len(data)


def read_frame_set(
    file: BinaryIO,
    header: Block,
    hash_mode: int = HashMode.USE,
    byte_order: str = "<",
    *,
    lazy: bool = True,
) -> FrameSet:
    """
    Reads the table of contents and mapping tables that follow a frame
    set block.

    Parameters
    ----------
    file : `io.BufferedIOBase`
        Binary stream positioned right after the frame set block.

    header : `Block`
        Frame set block.

    hash_mode : `int`, default: :code:`HashMode.USE`
        Whether stored MD5 digests are verified.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    lazy : `bool`, keyword-only, default: :code:`True`
        Determines whether data block payloads are only read when
        requested.

    Returns
    -------
    frame_set : `FrameSet`
        Frame set. The stream is left at the end of the frame set.
    """

    parser = PayloadParser(header.payload, byte_order, header.block_id)
    first_frame, n_frames = parser.int64(), parser.int64()
    try:
        frame_set = FrameSet(first_frame, n_frames)
    except ConfigurationError as error:
        raise MalformedPayloadError(
            str(error), block_id=header.block_id, position=header.file_pos
        ) from None
    frame_set.next_frame_set_file_pos = parser.int64()
    frame_set.prev_frame_set_file_pos = parser.int64()
    frame_set.file_pos = header.file_pos

    toc = read_block(file, hash_mode, byte_order)
    if toc is None or toc.block_id != BlockID.BLOCK_TABLE_OF_CONTENTS:
        raise MalformedPayloadError(
            f"The frame set at byte {header.file_pos} is not followed by a "
            "table of contents.",
            position=header.file_pos,
        )
    parser = PayloadParser(toc.payload, byte_order, toc.block_id)
    n_mappings, n_entries = parser.int64(), parser.int64()
    for _ in range(n_entries):
        block_id, name = parser.int64(), parser.string()
        offset, length = parser.int64(), parser.int64()
        first_particle_number, n_particles = parser.int64(), parser.int64()
        frame_set._entries.append(
            TOCEntry(
                block_id,
                name,
                None if first_particle_number < 0 else first_particle_number,
                n_particles,
                offset,
                length,
            )
        )
        frame_set._blocks.append(None)

    for _ in range(n_mappings):
        block = read_block(file, hash_mode, byte_order)
        if block is None or block.block_id != BlockID.PARTICLE_MAPPING:
            raise MalformedPayloadError(
                f"Expected {n_mappings} particle mapping blocks after the table "
                f"of contents at byte {toc.file_pos}.",
                position=toc.file_pos,
            )
        frame_set.mappings.append(ParticleMapping.from_block(block, byte_order))

    frame_set._source = (file, hash_mode, byte_order)
    end = file.tell()
    for entry in frame_set._entries:
        end = max(end, frame_set.file_pos + entry.offset + entry.length)
    if not lazy:
        frame_set.load()
    file.seek(end)
    return frame_set


def read_next_frame_set(
    file: BinaryIO,
    hash_mode: int = HashMode.USE,
    byte_order: str = "<",
    *,
    lazy: bool = True,
) -> FrameSet | None:
    """
    Reads the frame set at or after the current position of a stream.

    Blocks that are not frame set blocks are skipped with a warning.

    Parameters
    ----------
    file : `io.BufferedIOBase`
        Binary stream.

    hash_mode : `int`, default: :code:`HashMode.USE`
        Whether stored MD5 digests are verified.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    lazy : `bool`, keyword-only, default: :code:`True`
        Determines whether data block payloads are only read when
        requested.

    Returns
    -------
    frame_set : `FrameSet` or `None`
        Frame set, or `None` if the end of the stream was reached.
    """

    while (block := read_block(file, hash_mode, byte_order)) is not None:
        if block.block_id == BlockID.TRAJECTORY_FRAME_SET:
            return read_frame_set(file, block, hash_mode, byte_order, lazy=lazy)
        warnings.warn(
            f"Skipping block {block.block_id} ('{block.name}') at byte "
            f"{block.file_pos} outside of a frame set."
        )
    return None
