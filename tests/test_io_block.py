import hashlib
import io
import pathlib
import struct
import sys

import numpy as np
import pytest

sys.path.insert(0, f"{pathlib.Path(__file__).parents[1].resolve().as_posix()}/src")
from tngcraft.errors import (  # noqa: E402
    ConfigurationError,
    CorruptHeaderError,
    IntegrityError,
    MalformedPayloadError,
    ShortReadError,
    Status,
)
from tngcraft.io import MAX_STR_LEN, BlockID, BlockType, HashMode  # noqa: E402
from tngcraft.io.block import (  # noqa: E402
    Block,
    PayloadBuilder,
    PayloadParser,
    detect_byte_order,
    encode_string,
    overwrite_block,
    read_block,
    write_block,
)
from tngcraft.io.header import endianness_block  # noqa: E402

rng = np.random.default_rng()


def _serialize(block: Block, hash_mode: int = HashMode.USE, byte_order: str = "<"):
    file = io.BytesIO()
    write_block(block, file, hash_mode, byte_order)
    return file.getvalue()


def test_func_write_block():

    payload = rng.bytes(100)

    # TEST CASE 1: Declared length matches the serialized size
    block = Block(BlockID.POSITIONS, payload)
    data = _serialize(block)
    assert len(data) == block.length == struct.unpack("<q", data[:8])[0]
    assert block.name == "positions"
    assert block.digest == hashlib.md5(payload).digest()

    # TEST CASE 2: No digest is stored when hashing is skipped
    data_skip = _serialize(block, HashMode.SKIP)
    assert block.digest is None
    assert len(data_skip) == len(data) - 16

    # TEST CASE 3: Byte order of the header fields
    data = _serialize(Block(BlockID.FORCES, payload), byte_order=">")
    assert struct.unpack(">qq", data[:16])[1] == BlockID.FORCES


def test_func_read_block():

    payload = rng.bytes(256)

    # TEST CASE 1: Round trip with digest verification in both byte
    # orders
    for byte_order in "<>":
        data = _serialize(Block(BlockID.BOX_SHAPE, payload), byte_order=byte_order)
        block = read_block(io.BytesIO(data), HashMode.USE, byte_order)
        assert block.block_id == BlockID.BOX_SHAPE
        assert block.block_type == BlockType.TRAJECTORY
        assert block.name == "box shape"
        assert block.payload == payload
        assert block.file_pos == 0

    # TEST CASE 2: Flipping any single payload byte fails verification
    data = _serialize(Block(BlockID.POSITIONS, payload))
    for index in rng.integers(len(data) - len(payload), len(data), size=10):
        corrupted = bytearray(data)
        corrupted[index] ^= 0xFF
        with pytest.raises(IntegrityError) as error:
            read_block(io.BytesIO(bytes(corrupted)), HashMode.USE)
        assert error.value.status == Status.FAILURE

        # Skipping verification returns the corrupted payload
        block = read_block(io.BytesIO(bytes(corrupted)), HashMode.SKIP)
        assert block.payload != payload

    # TEST CASE 3: Blocks without a digest pass verification
    data = _serialize(Block(BlockID.POSITIONS, payload), HashMode.SKIP)
    assert read_block(io.BytesIO(data), HashMode.USE).digest is None

    # TEST CASE 4: Unknown block IDs are preserved
    block = Block(123456, payload, name="custom", block_type=BlockType.NON_TRAJECTORY)
    data = _serialize(block)
    read = read_block(io.BytesIO(data))
    assert (read.block_id, read.name, read.block_type) == (
        123456,
        "custom",
        BlockType.NON_TRAJECTORY,
    )
    assert _serialize(read) == data

    # TEST CASE 5: End of stream
    assert read_block(io.BytesIO(b"")) is None

    # TEST CASE 6: Truncated streams
    for end in (5, 20, len(data) - 1):
        with pytest.raises(ShortReadError):
            read_block(io.BytesIO(data[:end]))

    # TEST CASE 7: Impossible declared lengths
    for length in (3, 1 << 60, -1):
        with pytest.raises(CorruptHeaderError) as error:
            read_block(io.BytesIO(struct.pack("<q", length) + data[8:]))
        assert error.value.status == Status.CRITICAL

    # TEST CASE 8: Invalid header flags
    corrupted = bytearray(data)
    corrupted[17] = 7
    with pytest.raises(CorruptHeaderError):
        read_block(io.BytesIO(bytes(corrupted)))

    # TEST CASE 9: Blocks read back to back
    file = io.BytesIO()
    for block_id in (BlockID.BOX_SHAPE, BlockID.POSITIONS, BlockID.VELOCITIES):
        write_block(Block(block_id, rng.bytes(10)), file)
    file.seek(0)
    block_ids = []
    while (block := read_block(file)) is not None:
        block_ids.append(block.block_id)
    assert block_ids == [BlockID.BOX_SHAPE, BlockID.POSITIONS, BlockID.VELOCITIES]


def test_func_overwrite_block():

    file = io.BytesIO()
    write_block(Block(BlockID.GENERAL_INFO, b"\x00" * 8), file)
    write_block(Block(BlockID.POSITIONS, b"\x01" * 8), file)
    end = file.tell()

    # TEST CASE 1: Block of the same length is replaced in place
    overwrite_block(Block(BlockID.GENERAL_INFO, b"\x02" * 8), file, 0)
    assert file.tell() == end
    file.seek(0)
    assert read_block(file).payload == b"\x02" * 8
    assert read_block(file).payload == b"\x01" * 8

    # TEST CASE 2: Block of a different length is rejected
    with pytest.raises(ConfigurationError):
        overwrite_block(Block(BlockID.GENERAL_INFO, b"\x02" * 9), file, 0)


def test_func_detect_byte_order():

    # TEST CASE 1: Byte order from the endianness block
    for byte_order in "<>":
        file = io.BytesIO(_serialize(endianness_block(byte_order), byte_order=byte_order))
        assert detect_byte_order(file) == byte_order
        assert file.tell() == 0

    # TEST CASE 2: File that does not start with an endianness block
    with pytest.raises(CorruptHeaderError):
        detect_byte_order(io.BytesIO(_serialize(Block(BlockID.POSITIONS, b"x"))))
    with pytest.raises(ShortReadError):
        detect_byte_order(io.BytesIO(b"\x00" * 4))


def test_class_PayloadBuilder():

    # TEST CASE 1: Fields read back in order
    for byte_order in "<>":
        values = rng.normal(size=7)
        payload = (
            PayloadBuilder(byte_order)
            .uint8(255)
            .int64(-42)
            .string("water")
            .float64(0.5)
            .array(values, "f8")
            .getvalue()
        )
        parser = PayloadParser(payload, byte_order)
        assert parser.uint8() == 255
        assert parser.int64() == -42
        assert parser.string() == "water"
        assert parser.float64() == 0.5
        assert np.array_equal(parser.array("f8", 7), values)
        assert parser.remaining == 0

        # TEST CASE 2: Reading past the end of the payload
        with pytest.raises(MalformedPayloadError):
            parser.int64()

    # TEST CASE 3: Invalid strings
    with pytest.raises(ConfigurationError):
        encode_string("a\0b")
    with pytest.raises(ConfigurationError):
        encode_string("a" * MAX_STR_LEN)
    assert encode_string("a" * (MAX_STR_LEN - 1))[-1:] == b"\0"
