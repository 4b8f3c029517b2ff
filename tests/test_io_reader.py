import pathlib
import sys

import numpy as np
import pytest

sys.path.insert(0, f"{pathlib.Path(__file__).parents[1].resolve().as_posix()}/src")
from tngcraft.errors import (  # noqa: E402
    CorruptHeaderError,
    IntegrityError,
    MalformedPayloadError,
    ShortReadError,
)
from tngcraft.io import (  # noqa: E402
    NO_NEIGHBOR,
    BlockID,
    CodecID,
    DataType,
    HashMode,
)
from tngcraft.io.block import Block  # noqa: E402
from tngcraft.io.header import endianness_block  # noqa: E402
from tngcraft.io.reader import TNGReader  # noqa: E402
from tngcraft.io.writer import TNGWriter  # noqa: E402
from tngcraft.topology import Topology  # noqa: E402

rng = np.random.default_rng()


def _argon(n_particles: int) -> Topology:
    topology = Topology()
    argon = topology.add_molecule("argon", count=n_particles)
    topology.add_atom(topology.add_residue(topology.add_chain(argon, "A"), "AR"), "Ar")
    return topology


def _write(
    path: pathlib.Path,
    n_frame_sets: int = 3,
    n_frames: int = 5,
    n_particles: int = 10,
    **kwargs,
) -> tuple[np.ndarray[float], np.ndarray[float]]:
    """
    Writes a trajectory of box shapes and compressed positions and
    returns the values written.
    """

    boxes = np.repeat(rng.uniform(3, 4, size=(n_frame_sets * n_frames, 1)), 9, axis=1)
    positions = rng.uniform(0, 3, size=(n_frame_sets * n_frames, n_particles, 3))
    with TNGWriter(path, topology=_argon(n_particles), **kwargs) as writer:
        writer.add_data_block(30000, DataType.CHAR, [["argon gas"]], name="label")
        writer.add_opaque_block(Block(9000, b"vendor data", name="vendor"))
        for i in range(n_frame_sets):
            frame_set = writer.new_frame_set(n_frames)
            frames = slice(i * n_frames, (i + 1) * n_frames)
            frame_set.add_data_block(BlockID.BOX_SHAPE, DataType.DOUBLE, boxes[frames])
            frame_set.add_data_block(
                BlockID.POSITIONS,
                DataType.FLOAT,
                positions[frames],
                particle_dependent=True,
                codec_id=CodecID.TNG,
            )
            writer.write_frame_set(frame_set)
        assert writer.last_frame_set.first_frame == (n_frame_sets - 1) * n_frames
    return boxes, positions


def test_class_TNGReader(tmp_path):

    path = tmp_path / "reader.tng"
    boxes, positions = _write(path)

    # TEST CASE 1: File headers
    with pytest.warns(UserWarning):
        reader = TNGReader(path)
    with reader:
        assert reader.byte_order == "<"
        assert reader.general_info.first_frame_set_pos != NO_NEIGHBOR
        assert reader.topology.n_particles == 10
        assert reader.topology.particle_names()[0] == "Ar"
        label, datatype = reader.non_trajectory.get_data(30000)
        assert datatype == DataType.CHAR
        assert label.tolist() == [["argon gas"]]
        assert reader.non_trajectory.table_of_contents[0].name == "label"
        assert [(b.block_id, b.name, b.payload) for b in reader.opaque_blocks] == [
            (9000, "vendor", b"vendor data")
        ]

        # TEST CASE 2: Iteration over the chain of frame sets
        frame_sets = list(reader)
        assert [f.first_frame for f in frame_sets] == [0, 5, 10]
        for i, frame_set in enumerate(frame_sets):
            frames = slice(5 * i, 5 * (i + 1))
            assert np.array_equal(frame_set.get_data(BlockID.BOX_SHAPE)[0], boxes[frames])
            values, datatype = frame_set.get_particle_data(BlockID.POSITIONS)
            assert datatype == DataType.FLOAT
            assert np.all(np.abs(values - positions[frames]) <= 0.0005 + 1e-5)

        # TEST CASE 3: Sequential reads from the first frame set
        reader.rewind()
        assert reader.read_block_next().block_id == BlockID.TRAJECTORY_FRAME_SET
        reader.rewind()
        first_frames = []
        while (frame_set := reader.read_next_frame_set()) is not None:
            first_frames.append(frame_set.first_frame)
        assert first_frames == [0, 5, 10]
        assert reader.read_block_next() is None

        # TEST CASE 4: Random access
        last = reader.read_last_frame_set()
        assert last.first_frame == 10
        assert last.next_frame_set_file_pos == NO_NEIGHBOR
        assert reader.find_frame_set(7).first_frame == 5
        assert reader.find_frame_set(2, last).first_frame == 0
        assert reader.find_frame_set(14, last) is last
        assert reader.find_frame_set(15) is None
        with pytest.raises(MalformedPayloadError):
            reader.read_frame_set_at(0)

    # TEST CASE 5: Missing and invalid files
    with pytest.raises(FileNotFoundError):
        TNGReader(tmp_path / "missing.tng")
    path_bad = tmp_path / "bad.tng"
    path_bad.write_bytes(b"\x00" * 32)
    with pytest.raises(CorruptHeaderError):
        TNGReader(path_bad)
    path_bad.write_bytes(endianness_block("<").to_bytes())
    with pytest.raises(MalformedPayloadError):
        TNGReader(path_bad)


def test_class_TNGReader_options(tmp_path):

    # TEST CASE 1: Big-endian files without digests, decoded in parallel
    path = tmp_path / "big.tng"
    boxes, positions = _write(path, endianness="big", hash_mode=HashMode.SKIP)
    with pytest.warns(UserWarning):
        reader = TNGReader(path, lazy=False, parallel=True, n_workers=2)
    with reader:
        assert reader.byte_order == ">"
        frame_set = reader.read_last_frame_set()
        assert np.array_equal(frame_set.get_data(BlockID.BOX_SHAPE)[0], boxes[10:])
        assert np.all(
            np.abs(frame_set.get_particle_data(BlockID.POSITIONS)[0] - positions[10:])
            <= 0.0005 + 1e-5
        )

    # TEST CASE 2: Corrupted payload in the last frame set
    path = tmp_path / "corrupted.tng"
    _write(path)
    data = bytearray(path.read_bytes())
    data[-1] ^= 0xFF
    path.write_bytes(bytes(data))
    with pytest.warns(UserWarning):
        reader = TNGReader(path)
    with reader:
        frame_sets = list(reader)
        frame_sets[0].get_particle_data(BlockID.POSITIONS)
        with pytest.raises(IntegrityError):
            frame_sets[-1].get_particle_data(BlockID.POSITIONS)
    with pytest.warns(UserWarning):
        reader = TNGReader(path, lazy=False)
    with reader:
        with pytest.raises(IntegrityError):
            list(reader)

    # TEST CASE 3: Truncated file
    path = tmp_path / "truncated.tng"
    _write(path)
    path.write_bytes(path.read_bytes()[:-10])
    with pytest.warns(UserWarning):
        reader = TNGReader(path)
    with reader:
        frame_set = reader.read_last_frame_set()
        frame_set.get_data(BlockID.BOX_SHAPE)
        with pytest.raises(ShortReadError):
            frame_set.get_particle_data(BlockID.POSITIONS)
