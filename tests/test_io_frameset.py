import io
import pathlib
import sys

import numpy as np
import pytest

sys.path.insert(0, f"{pathlib.Path(__file__).parents[1].resolve().as_posix()}/src")
from tngcraft import Q_  # noqa: E402
from tngcraft.compression import Algorithm  # noqa: E402
from tngcraft.errors import (  # noqa: E402
    BlockNotFoundError,
    ConfigurationError,
    IntegrityError,
    MalformedPayloadError,
)
from tngcraft.io import NO_NEIGHBOR, BlockID, CodecID, DataType, HashMode  # noqa: E402
from tngcraft.io.block import Block  # noqa: E402
from tngcraft.io.frameset import (  # noqa: E402
    DataBlock,
    FrameSet,
    ParticleMapping,
    n_samples,
    new_frame_set,
    read_next_frame_set,
    write_frame_set,
)

rng = np.random.default_rng()


class FailingStream(io.BytesIO):
    """
    Stream that runs out of space partway through a write.
    """

    def write(self, data):
        super().write(bytes(data)[:10])
        raise OSError("No space left on device")


def _frame_set(first_frame: int = 0, n_frames: int = 10, n_particles: int = 20):
    frame_set = new_frame_set(first_frame, n_frames)
    frame_set.add_data_block(
        BlockID.BOX_SHAPE,
        DataType.DOUBLE,
        np.tile(np.diag([4.0, 5.0, 6.0]).ravel(), (n_frames, 1)),
    )
    frame_set.add_data_block(
        BlockID.POSITIONS,
        DataType.FLOAT,
        rng.uniform(0, 4, size=(n_frames, n_particles, 3)).astype(np.float32),
        particle_dependent=True,
        codec_id=CodecID.TNG,
    )
    return frame_set


def test_func_n_samples():

    # TEST CASE 1: Partial strides still store a sample
    assert n_samples(10, 1) == 10
    assert n_samples(10, 3) == 4
    assert n_samples(9, 3) == 3
    assert n_samples(1, 5) == 1


def test_class_ParticleMapping():

    # TEST CASE 1: Translation to real particle numbers
    mapping = ParticleMapping(100, [7, 3, 9, 1, 5])
    assert mapping.real(102) == 9
    assert mapping.real(np.array([100, 104])).tolist() == [7, 5]
    assert mapping.end == 105
    assert mapping.covers(101, 4) and not mapping.covers(101, 5)
    assert mapping.overlaps(104, 10) and not mapping.overlaps(105, 10)

    # TEST CASE 2: Round trip through the particle mapping block
    for byte_order in "<>":
        read = ParticleMapping.from_block(mapping.to_block(byte_order), byte_order)
        assert read.first_particle_number == 100
        assert np.array_equal(read.mapping_table, mapping.mapping_table)

    # TEST CASE 3: Invalid mapping tables
    for first, table in ((-1, [1]), (0, []), (0, [[1, 2]]), (0, [1, 1]), (0, [-1])):
        with pytest.raises(ConfigurationError):
            ParticleMapping(first, table)

    # TEST CASE 4: Invalid mapping block
    block = ParticleMapping(0, [1, 2]).to_block()
    block.payload = block.payload[:-8]
    with pytest.raises(MalformedPayloadError):
        ParticleMapping.from_block(block)


def test_class_FrameSet():

    # TEST CASE 1: Frame range
    frame_set = FrameSet(20, 10)
    assert frame_set.last_frame == 29
    assert frame_set.next_frame_set_file_pos == NO_NEIGHBOR
    assert frame_set.prev_frame_set_file_pos == NO_NEIGHBOR
    with pytest.raises(ConfigurationError):
        FrameSet(-1, 10)
    with pytest.raises(ConfigurationError):
        FrameSet(0, 0)


def test_func_add_data_block():

    frame_set = FrameSet(0, 10)

    # TEST CASE 1: Stride lengths that do not divide the number of frames
    block = frame_set.add_data_block(
        20000, DataType.INT, np.zeros((4, 2), dtype=int), stride_length=3
    )
    assert block.n_samples == 4
    assert block.sample_frames.tolist() == [0, 3, 6, 9]
    assert block.name == "data block 20000"
    block = frame_set.add_data_block(
        20001, DataType.INT, np.zeros((3, 1), dtype=int), n_frames=7, stride_length=3
    )
    assert block.sample_frames.tolist() == [0, 3, 6]

    # TEST CASE 2: Invalid blocks leave the frame set unchanged
    n_entries = len(frame_set.table_of_contents)
    invalid = [
        (BlockID.GENERAL_INFO, DataType.INT, np.zeros((10, 1), dtype=int), {}),
        (20002, 7, np.zeros((10, 1), dtype=int), {}),
        (20002, DataType.INT, np.zeros((10, 1), dtype=int), {"codec_id": 5}),
        (20002, DataType.CHAR, np.full((10, 1), "a"), {"codec_id": CodecID.TNG}),
        (20002, DataType.INT, np.zeros((10, 1), dtype=int), {"stride_length": 0}),
        (20002, DataType.INT, np.zeros((1, 1), dtype=int), {"stride_length": 11}),
        (20002, DataType.INT, np.zeros((11, 1), dtype=int), {"n_frames": 11}),
        (20002, DataType.INT, np.zeros((3, 1), dtype=int), {"stride_length": 3}),
        (20002, DataType.INT, np.zeros((10, 2), dtype=int), {"n_values_per_frame": 3}),
        (20002, DataType.INT, np.zeros((10,), dtype=int), {}),
        (20002, DataType.INT, np.zeros((10, 1)), {}),
        (20002, DataType.FLOAT, np.zeros((10, 1), dtype=int), {}),
        (20002, DataType.CHAR, np.zeros((10, 1)), {}),
        (20002, DataType.DOUBLE, np.zeros((10, 1)), {"codec_id": 2, "precision": -1}),
        (
            20002,
            DataType.DOUBLE,
            np.zeros((10, 1)),
            {"codec_id": 2, "precision": Q_(1, "nm")},
        ),
        (20000, DataType.INT, np.zeros((4, 2), dtype=int), {"stride_length": 3}),
        (20002, DataType.CHAR, np.full((10, 1), "x" * 2000), {}),
        (20002, DataType.CHAR, np.full((10, 1), "a\0b"), {}),
        (20002, DataType.DOUBLE, np.full((10, 1), 1e30), {"codec_id": 2}),
        (20002, DataType.DOUBLE, np.full((10, 1), np.nan), {"codec_id": 1}),
        (
            20002,
            DataType.FLOAT,
            np.zeros((10, 5)),
            {"particle_dependent": True},
        ),
    ]
    for block_id, datatype, values, kwargs in invalid:
        with pytest.raises(ConfigurationError):
            frame_set.add_data_block(block_id, datatype, values, **kwargs)
    assert len(frame_set.table_of_contents) == n_entries

    # TEST CASE 3: Particle-dependent blocks split over particle ranges
    frame_set.add_data_block(
        BlockID.FORCES,
        DataType.FLOAT,
        np.zeros((10, 5, 3)),
        particle_dependent=True,
    )
    frame_set.add_data_block(
        BlockID.FORCES,
        DataType.FLOAT,
        np.zeros((10, 5, 3)),
        particle_dependent=True,
        first_particle_number=5,
    )
    for first, kwargs in ((3, {}), (10, {"stride_length": 2})):
        with pytest.raises(ConfigurationError):
            frame_set.add_data_block(
                BlockID.FORCES,
                DataType.FLOAT,
                np.zeros((n_samples(10, kwargs.get("stride_length", 1)), 5, 3)),
                particle_dependent=True,
                first_particle_number=first,
                **kwargs,
            )
    with pytest.raises(ConfigurationError):
        frame_set.add_data_block(
            BlockID.FORCES, DataType.FLOAT, np.zeros((10, 3))
        )
    assert frame_set.block_ids == [20000, 20001, BlockID.FORCES]

    # TEST CASE 4: Precision with units is converted to internal units
    block = frame_set.add_data_block(
        BlockID.POSITIONS,
        DataType.FLOAT,
        np.zeros((10, 2, 3)),
        particle_dependent=True,
        codec_id=CodecID.TNG,
        precision=Q_(0.01, "angstrom"),
    )
    assert np.isclose(block.precision, 0.001)
    block = frame_set.add_data_block(
        BlockID.VELOCITIES,
        DataType.FLOAT,
        np.zeros((10, 2, 3)),
        particle_dependent=True,
        codec_id=CodecID.XTC,
    )
    assert block.precision == 0.001

    # TEST CASE 5: Uncompressed floating-point blocks have no precision
    block = frame_set.add_data_block(
        BlockID.BOX_SHAPE, DataType.DOUBLE, np.zeros((10, 9)), precision=0.1
    )
    assert block.precision is None

    # TEST CASE 6: Compressed integers spanning the full 64-bit range
    int64 = np.iinfo(np.int64)
    values = np.tile([[int64.min], [int64.max]], (5, 1))
    block = frame_set.add_data_block(30000, DataType.INT, values, codec_id=CodecID.TNG)
    read = DataBlock.from_block(block.to_block())
    assert np.array_equal(read.values, values)


def test_func_add_particle_mapping():

    frame_set = FrameSet(0, 4)
    frame_set.add_particle_mapping(100, [7, 3, 9, 1, 5])

    # TEST CASE 1: Overlapping mapping tables
    with pytest.raises(ConfigurationError):
        frame_set.add_particle_mapping(103, [20, 21])
    with pytest.raises(ConfigurationError):
        frame_set.add_particle_mapping(105, [7])
    frame_set.add_particle_mapping(105, [20, 21])
    assert len(frame_set.mappings) == 2

    # TEST CASE 2: Data blocks must lie inside a single mapping table
    with pytest.raises(ConfigurationError):
        frame_set.add_data_block(
            BlockID.POSITIONS,
            DataType.FLOAT,
            np.zeros((4, 4, 3)),
            particle_dependent=True,
            first_particle_number=103,
        )

    # TEST CASE 3: Retrieval in real particle numbering
    local = rng.uniform(size=(4, 5, 3))
    frame_set.add_data_block(
        BlockID.POSITIONS,
        DataType.DOUBLE,
        local,
        particle_dependent=True,
        first_particle_number=100,
    )
    values, datatype = frame_set.get_particle_data(BlockID.POSITIONS)
    assert datatype == DataType.DOUBLE
    assert values.shape == (4, 10, 3)
    assert np.array_equal(values[:, 9], local[:, 2])
    assert np.array_equal(values[:, [7, 3, 9, 1, 5]], local)
    assert np.all(np.isnan(values[:, [0, 2, 4, 6, 8]]))

    # TEST CASE 4: Missing blocks and undersized systems
    with pytest.raises(BlockNotFoundError):
        frame_set.get_data(BlockID.POSITIONS)
    with pytest.raises(BlockNotFoundError):
        frame_set.get_particle_data(BlockID.VELOCITIES)
    with pytest.raises(ConfigurationError):
        frame_set.get_particle_data(BlockID.POSITIONS, n_particles=9)
    assert frame_set.get_particle_data(BlockID.POSITIONS, 12)[0].shape == (4, 12, 3)


def test_class_DataBlock():

    frame_set = FrameSet(0, 6)

    # TEST CASE 1: Round trip of every datatype and codec in both byte
    # orders
    positions = rng.uniform(-5, 5, size=(6, 30, 3))
    blocks = [
        frame_set.add_data_block(
            20000, DataType.CHAR, np.array([["a", "bb", ""]] * 6)
        ),
        frame_set.add_data_block(
            20001, DataType.INT, rng.integers(-100, 100, size=(6, 4)), codec_id=CodecID.TNG
        ),
        frame_set.add_data_block(
            20002, DataType.INT, rng.integers(-100, 100, size=(2, 4)), stride_length=3
        ),
        frame_set.add_data_block(
            BlockID.POSITIONS,
            DataType.DOUBLE,
            positions,
            particle_dependent=True,
            codec_id=CodecID.XTC,
        ),
        frame_set.add_data_block(
            BlockID.VELOCITIES,
            DataType.FLOAT,
            positions,
            particle_dependent=True,
            codec_id=CodecID.TNG,
            precision=0.01,
        ),
    ]
    for byte_order in "<>":
        for block in blocks:
            read = DataBlock.from_block(block.to_block(byte_order), byte_order)
            assert read.values.shape == block.values.shape
            assert read.values.dtype == block.values.dtype
            assert read.stride_length == block.stride_length
            assert read.first_particle_number == block.first_particle_number
            assert read.algorithm == block.algorithm
            if block.datatype in (DataType.CHAR, DataType.INT):
                assert np.array_equal(read.values, block.values)
            else:
                assert np.all(
                    np.abs(read.values - block.values) <= block.precision / 2 + 1e-5
                )

    # TEST CASE 2: Codec IDs select the compression algorithms
    assert blocks[0].algorithm is None
    assert blocks[3].algorithm == Algorithm.FIXED_WIDTH
    assert isinstance(blocks[4].algorithm, Algorithm)

    # TEST CASE 3: Malformed payloads
    block = blocks[2].to_block()
    with pytest.raises(MalformedPayloadError):
        DataBlock.from_block(Block(block.block_id, b"\x09" + block.payload[1:]))
    with pytest.raises(MalformedPayloadError):
        DataBlock.from_block(Block(block.block_id, block.payload[:-3]))

    # TEST CASE 4: Compressed values whose count disagrees with the block
    # dimensions
    block = blocks[4].to_block()
    n_values_per_frame = blocks[4].n_values_per_frame + 1
    payload = (
        block.payload[:19]
        + n_values_per_frame.to_bytes(8, "little")
        + block.payload[27:]
    )
    with pytest.raises(MalformedPayloadError):
        DataBlock.from_block(Block(block.block_id, payload))


def test_func_write_frame_set():

    # TEST CASE 1: Round trip through a stream in both byte orders
    for byte_order in "<>":
        frame_set = _frame_set()
        file = io.BytesIO()
        length = write_frame_set(file, frame_set, byte_order=byte_order)
        assert length == len(file.getvalue())
        assert frame_set.file_pos == 0

        file.seek(0)
        read = read_next_frame_set(file, byte_order=byte_order)
        assert file.tell() == length
        assert (read.first_frame, read.n_frames) == (0, 10)
        assert [e.block_id for e in read.table_of_contents] == [
            BlockID.BOX_SHAPE,
            BlockID.POSITIONS,
        ]
        box, datatype = read.get_data(BlockID.BOX_SHAPE)
        assert datatype == DataType.DOUBLE
        assert np.array_equal(box, frame_set.get_data(BlockID.BOX_SHAPE)[0])
        positions, datatype = read.get_particle_data(BlockID.POSITIONS)
        assert datatype == DataType.FLOAT
        assert np.all(
            np.abs(positions - frame_set.get_particle_data(BlockID.POSITIONS)[0])
            <= 0.0005 + 1e-5
        )
        assert read_next_frame_set(file, byte_order=byte_order) is None

    # TEST CASE 2: Frame sets are linked in both directions
    file = io.BytesIO()
    first, second = _frame_set(0, 5), _frame_set(5, 5)
    write_frame_set(file, first)
    write_frame_set(file, second, first)
    assert first.next_frame_set_file_pos == second.file_pos
    assert second.prev_frame_set_file_pos == first.file_pos

    file.seek(0)
    read_first = read_next_frame_set(file)
    read_second = read_next_frame_set(file)
    assert read_first.prev_frame_set_file_pos == NO_NEIGHBOR
    assert read_first.next_frame_set_file_pos == read_second.file_pos
    assert read_second.prev_frame_set_file_pos == read_first.file_pos == 0
    assert read_second.next_frame_set_file_pos == NO_NEIGHBOR
    assert read_next_frame_set(file) is None

    # TEST CASE 3: Frame sets must be contiguous and written in order
    with pytest.raises(ConfigurationError):
        write_frame_set(file, _frame_set(11, 5), second)
    with pytest.raises(ConfigurationError):
        write_frame_set(file, _frame_set(15, 5), FrameSet(10, 5))

    # TEST CASE 4: Failed writes leave the stream unchanged
    file = FailingStream()
    io.BytesIO.write(file, b"header")
    with pytest.raises(OSError):
        write_frame_set(file, _frame_set())
    assert file.getvalue() == b"header"

    # TEST CASE 5: Parallel encoding produces identical bytes
    frame_set = _frame_set()
    frame_set.add_data_block(
        BlockID.VELOCITIES,
        DataType.FLOAT,
        rng.normal(size=(10, 20, 3)),
        particle_dependent=True,
        codec_id=CodecID.XTC,
    )
    assert frame_set.to_bytes() == frame_set.to_bytes(parallel=True, n_workers=3)

    # TEST CASE 6: Lazy loading defers digest verification to the first
    # access of the corrupted block
    file = io.BytesIO()
    frame_set = _frame_set()
    write_frame_set(file, frame_set)
    entry = frame_set.table_of_contents[0]
    data = bytearray(file.getvalue())
    data[entry.offset + entry.length - 1] ^= 0xFF
    file = io.BytesIO(bytes(data))
    read = read_next_frame_set(file)
    read.get_particle_data(BlockID.POSITIONS)
    with pytest.raises(IntegrityError):
        read.get_data(BlockID.BOX_SHAPE)
    file.seek(0)
    read = read_next_frame_set(file, HashMode.SKIP, lazy=False)
    assert len(read.data_blocks()) == 2
    file.seek(0)
    with pytest.raises(IntegrityError):
        read_next_frame_set(file, lazy=False)


def test_func_read_next_frame_set():

    # TEST CASE 1: Blocks outside of frame sets are skipped with a warning
    file = io.BytesIO()
    file.write(Block(30000, b"opaque").to_bytes())
    write_frame_set(file, _frame_set())
    file.seek(0)
    with pytest.warns(UserWarning):
        frame_set = read_next_frame_set(file)
    assert frame_set.first_frame == 0
    assert frame_set.file_pos > 0
    assert frame_set.get_data(BlockID.BOX_SHAPE)[0].shape == (10, 9)

    # TEST CASE 2: Frame set block without a table of contents
    file = io.BytesIO(FrameSet(0, 1).header_block().to_bytes())
    with pytest.raises(MalformedPayloadError):
        read_next_frame_set(file)
