import pathlib
import sys

import pytest

sys.path.insert(0, f"{pathlib.Path(__file__).parents[1].resolve().as_posix()}/src")
from tngcraft.errors import ConfigurationError  # noqa: E402
from tngcraft.io import NO_NEIGHBOR, DataType  # noqa: E402
from tngcraft.io.block import Block  # noqa: E402
from tngcraft.io.reader import TNGReader  # noqa: E402
from tngcraft.io.writer import TNGWriter  # noqa: E402


def test_class_TNGWriter(tmp_path):

    path = tmp_path / "writer.tng"

    # TEST CASE 1: Invalid endianness
    with pytest.raises(ValueError):
        TNGWriter(path, endianness="middle")

    # TEST CASE 2: File closed before any frame set is written
    with TNGWriter(path) as writer:
        assert not writer.headers_written
    with TNGReader(path) as reader:
        assert reader.general_info.first_frame_set_pos == NO_NEIGHBOR
        assert reader.topology is None
        assert reader.read_first_frame_set() is None
        assert reader.read_last_frame_set() is None
        assert list(reader) == []

    # TEST CASE 3: Headers can only be written once and must precede
    # non-trajectory blocks
    with TNGWriter(path) as writer:
        writer.write_headers()
        assert writer.headers_written
        with pytest.raises(ConfigurationError):
            writer.write_headers()
        with pytest.raises(ConfigurationError):
            writer.add_data_block(30000, DataType.INT, [[1]])
        with pytest.raises(ConfigurationError):
            writer.add_opaque_block(Block(9000))

    # TEST CASE 4: Frame sets must follow each other
    with TNGWriter(path) as writer:
        writer.write_frame_set(writer.new_frame_set(5))
        with pytest.raises(ConfigurationError):
            writer.write_frame_set(writer.new_frame_set(5, first_frame=7))
        writer.write_frame_sets(writer.new_frame_set(5) for _ in range(1))
        assert writer.last_frame_set.first_frame == 5

    # TEST CASE 5: Values that cannot be stored are rejected when added
    with TNGWriter(path) as writer:
        with pytest.raises(ConfigurationError):
            writer.add_data_block(30000, DataType.CHAR, [["x" * 2000]])
        with pytest.raises(ConfigurationError):
            writer.add_data_block(30000, DataType.CHAR, [["a\0b"]])
        assert writer.non_trajectory.block_ids == []
