"""
Blocks
======

This module contains the self-describing binary block that every part
of a TNG file is stored in, and helpers to build and parse block
payloads.

A serialized block consists of

* the total block length, including the header (64-bit integer),
* the block ID (64-bit integer),
* the block type flag (8-bit integer, :code:`0` for non-trajectory and
  :code:`1` for trajectory blocks),
* the digest flag (8-bit integer),
* the MD5 digest of the payload (16 bytes, only if the digest flag is
  set),
* the block name (null-terminated UTF-8 string), and
* the payload.

All integers use the byte order of the file, which is fixed by the very
first block.
"""

import hashlib
import os
import struct
from typing import Any, BinaryIO

import numpy as np

from . import (
    HASH_LEN,
    MAX_STR_LEN,
    BlockID,
    BlockType,
    HashMode,
)
from ..errors import (
    ConfigurationError,
    CorruptHeaderError,
    IntegrityError,
    MalformedPayloadError,
    ShortReadError,
)

# Length, ID, type flag, digest flag, and an empty name
MIN_BLOCK_LENGTH = 19

# Largest block length a header may declare
MAX_BLOCK_LENGTH = 1 << 48


def encode_string(string: str) -> bytes:
    """
    Encodes a string as null-terminated UTF-8.

    Parameters
    ----------
    string : `str`
        String to encode.

    Returns
    -------
    data : `bytes`
        Encoded string, including the null terminator.
    """

    data = string.encode()
    if b"\0" in data:
        raise ConfigurationError(f"String {string!r} contains a null character.")
    if len(data) >= MAX_STR_LEN:
        raise ConfigurationError(
            f"String {string[:32]!r}... is longer than the maximum of "
            f"{MAX_STR_LEN - 1} bytes."
        )
    return data + b"\0"


class PayloadBuilder:
    """
    Accumulates the fields of a block payload.

    Parameters
    ----------
    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.
    """

    def __init__(self, byte_order: str = "<") -> None:
        self._byte_order = byte_order
        self._parts = []

    def _pack(self, fmt: str, value: Any) -> "PayloadBuilder":
        self._parts.append(struct.pack(f"{self._byte_order}{fmt}", value))
        return self

    def uint8(self, value: int) -> "PayloadBuilder":
        return self._pack("B", value)

    def uint32(self, value: int) -> "PayloadBuilder":
        return self._pack("I", value)

    def int64(self, value: int) -> "PayloadBuilder":
        return self._pack("q", value)

    def float64(self, value: float) -> "PayloadBuilder":
        return self._pack("d", value)

    def string(self, value: str) -> "PayloadBuilder":
        self._parts.append(encode_string(value))
        return self

    def array(self, values: np.ndarray, dtype: str) -> "PayloadBuilder":
        self._parts.append(
            np.ascontiguousarray(values, dtype=f"{self._byte_order}{dtype}").tobytes()
        )
        return self

    def raw(self, data: bytes) -> "PayloadBuilder":
        self._parts.append(data)
        return self

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class PayloadParser:
    """
    Reads the fields of a block payload in order.

    Parameters
    ----------
    payload : `bytes`
        Block payload.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    block_id : `int`, optional
        ID of the block the payload belongs to, reported in errors.
    """

    def __init__(
        self, payload: bytes, byte_order: str = "<", block_id: int | None = None
    ) -> None:
        self._data = memoryview(payload)
        self._byte_order = byte_order
        self._block_id = block_id
        self._cursor = 0

    def _take(self, n: int) -> memoryview:
        if n < 0 or self._cursor + n > len(self._data):
            raise MalformedPayloadError(
                f"Payload of block {self._block_id} ended unexpectedly at "
                f"byte {self._cursor}.",
                block_id=self._block_id,
            )
        chunk = self._data[self._cursor : self._cursor + n]
        self._cursor += n
        return chunk

    def _unpack(self, fmt: str) -> Any:
        fmt = f"{self._byte_order}{fmt}"
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]

    def uint8(self) -> int:
        return self._unpack("B")

    def uint32(self) -> int:
        return self._unpack("I")

    def int64(self) -> int:
        return self._unpack("q")

    def float64(self) -> float:
        return self._unpack("d")

    def string(self) -> str:
        end = bytes(self._data[self._cursor : self._cursor + MAX_STR_LEN]).find(b"\0")
        if end < 0:
            raise MalformedPayloadError(
                f"Unterminated string in the payload of block {self._block_id}.",
                block_id=self._block_id,
            )
        value = bytes(self._take(end)).decode(errors="replace")
        self._cursor += 1
        return value

    def array(self, dtype: str, count: int) -> np.ndarray:
        dtype = np.dtype(f"{self._byte_order}{dtype}")
        return np.frombuffer(self._take(count * dtype.itemsize), dtype=dtype).astype(
            dtype.newbyteorder("=")
        )

    def raw(self, n: int | None = None) -> bytes:
        return bytes(self._take(self.remaining if n is None else n))

    @property
    def remaining(self) -> int:
        """
        Number of unread bytes.
        """

        return len(self._data) - self._cursor


class Block:
    """
    Self-describing, length-prefixed binary block.

    Parameters
    ----------
    block_id : `int`
        Block ID (kind tag). IDs without a predefined meaning are kept
        as is.

    payload : `bytes`, default: :code:`b""`
        Kind-specific payload.

    name : `str`, keyword-only, optional
        Human-readable block name. If not specified, the name of the
        predefined block ID is used.

    block_type : `int`, keyword-only, default: :code:`BlockType.TRAJECTORY`
        Block type flag.

    digest : `bytes`, keyword-only, optional
        MD5 digest read from a file.
    """

    def __init__(
        self,
        block_id: int,
        payload: bytes = b"",
        *,
        name: str | None = None,
        block_type: int = BlockType.TRAJECTORY,
        digest: bytes | None = None,
    ) -> None:
        self.block_id = int(block_id)
        self.payload = bytes(payload)
        if name is None:
            try:
                name = BlockID(self.block_id).name.replace("_", " ").lower()
            except ValueError:
                name = ""
        self.name = name
        self.block_type = BlockType(block_type)
        self.digest = digest
        self.file_pos = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.block_id}, name={self.name!r}, "
            f"block_type={self.block_type.name}, length={self.length})"
        )

    def compute_digest(self) -> bytes:
        """
        Computes the MD5 digest of the payload.
        """

        return hashlib.md5(self.payload).digest()

    def header_size(self, hash_mode: int = HashMode.USE) -> int:
        """
        Number of bytes in the serialized header.

        Parameters
        ----------
        hash_mode : `int`, default: :code:`HashMode.USE`
            Whether a digest is included.
        """

        return (
            18
            + HASH_LEN * (hash_mode == HashMode.USE)
            + len(encode_string(self.name))
        )

    @property
    def length(self) -> int:
        """
        Number of bytes in the serialized block, including a digest if
        one is set.
        """

        return self.header_size(
            HashMode.SKIP if self.digest is None else HashMode.USE
        ) + len(self.payload)

    def verify(self) -> None:
        """
        Checks the stored digest against the payload.
        """

        if self.digest is not None and self.digest != self.compute_digest():
            raise IntegrityError(
                f"MD5 digest mismatch in block {self.block_id} ('{self.name}').",
                block_id=self.block_id,
                position=self.file_pos,
            )

    def to_bytes(self, hash_mode: int = HashMode.USE, byte_order: str = "<") -> bytes:
        """
        Serializes the block.

        Parameters
        ----------
        hash_mode : `int`, default: :code:`HashMode.USE`
            Whether the MD5 digest of the payload is generated and
            stored.

        byte_order : `str`, default: :code:`"<"`
            :code:`"<"` for little-endian or :code:`">"` for big-endian
            integers.

        Returns
        -------
        data : `bytes`
            Serialized block.
        """

        use_hash = hash_mode == HashMode.USE
        self.digest = self.compute_digest() if use_hash else None
        return b"".join(
            (
                struct.pack(
                    f"{byte_order}qqBB",
                    self.header_size(hash_mode) + len(self.payload),
                    self.block_id,
                    self.block_type,
                    use_hash,
                ),
                self.digest or b"",
                encode_string(self.name),
                self.payload,
            )
        )


def _stream_size(file: BinaryIO) -> int:
    try:
        return os.fstat(file.fileno()).st_size
    except (AttributeError, OSError, ValueError):
        position = file.tell()
        size = file.seek(0, os.SEEK_END)
        file.seek(position)
        return size


def write_block(
    block: Block,
    file: BinaryIO,
    hash_mode: int = HashMode.USE,
    byte_order: str = "<",
) -> int:
    """
    Serializes a block at the current position of a stream.

    Parameters
    ----------
    block : `Block`
        Block to write.

    file : `io.BufferedIOBase`
        Binary stream.

    hash_mode : `int`, default: :code:`HashMode.USE`
        Whether the MD5 digest of the payload is generated and stored.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    length : `int`
        Number of bytes written.
    """

    block.file_pos = file.tell()
    return file.write(block.to_bytes(hash_mode, byte_order))


def overwrite_block(
    block: Block,
    file: BinaryIO,
    position: int,
    hash_mode: int = HashMode.USE,
    byte_order: str = "<",
) -> None:
    """
    Replaces a previously written block of the same length, leaving the
    stream position unchanged.

    Parameters
    ----------
    block : `Block`
        Updated block.

    file : `io.BufferedIOBase`
        Binary stream.

    position : `int`
        Byte offset of the block to replace.

    hash_mode : `int`, default: :code:`HashMode.USE`
        Whether the MD5 digest of the payload is generated and stored.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.
    """

    data = block.to_bytes(hash_mode, byte_order)
    current = file.tell()
    file.seek(position)
    (old_length,) = struct.unpack(f"{byte_order}q", file.read(8))
    if old_length != len(data):
        file.seek(current)
        raise ConfigurationError(
            f"Cannot replace a {old_length}-byte block at byte {position} "
            f"with a {len(data)}-byte block.",
            block_id=block.block_id,
            position=position,
        )
    file.seek(position)
    file.write(data)
    file.seek(current)
    block.file_pos = position


def read_block(
    file: BinaryIO, hash_mode: int = HashMode.USE, byte_order: str = "<"
) -> Block | None:
    """
    Deserializes the block at the current position of a stream.

    Parameters
    ----------
    file : `io.BufferedIOBase`
        Binary stream.

    hash_mode : `int`, default: :code:`HashMode.USE`
        Whether the stored MD5 digest, if any, is checked against the
        payload.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    block : `Block` or `None`
        Block read, or `None` if the end of the stream was reached.
    """

    position = file.tell()
    data = file.read(8)
    if not data:
        return None
    if len(data) < 8:
        raise ShortReadError(
            f"Stream ended inside the block header at byte {position}.",
            position=position,
        )
    (length,) = struct.unpack(f"{byte_order}q", data)
    if not MIN_BLOCK_LENGTH <= length <= MAX_BLOCK_LENGTH:
        raise CorruptHeaderError(
            f"Block at byte {position} declares an impossible length of "
            f"{length} bytes.",
            position=position,
        )
    available = _stream_size(file) - position
    if length > available:
        raise ShortReadError(
            f"Block at byte {position} declares {length} bytes, but only "
            f"{available} are available.",
            position=position,
        )
    data = file.read(length - 8)
    if len(data) < length - 8:
        raise ShortReadError(
            f"Stream ended inside the block at byte {position}.", position=position
        )

    block_id, block_type, has_digest = struct.unpack(f"{byte_order}qBB", data[:10])
    if block_type not in (BlockType.NON_TRAJECTORY, BlockType.TRAJECTORY) or (
        has_digest not in (0, 1)
    ):
        raise CorruptHeaderError(
            f"Block at byte {position} has invalid header flags.",
            position=position,
            block_id=block_id,
        )
    cursor = 10
    digest = None
    if has_digest:
        digest = data[cursor : cursor + HASH_LEN]
        cursor += HASH_LEN
    end = data.find(b"\0", cursor, cursor + MAX_STR_LEN)
    if end < 0:
        raise CorruptHeaderError(
            f"Block at byte {position} has an unterminated name.",
            position=position,
            block_id=block_id,
        )
    block = Block(
        block_id,
        data[end + 1 :],
        name=data[cursor:end].decode(errors="replace"),
        block_type=block_type,
        digest=digest,
    )
    block.file_pos = position
    if hash_mode == HashMode.USE:
        block.verify()
    return block


def detect_byte_order(file: BinaryIO) -> str:
    """
    Determines the byte order of a file from its first block, which must
    be the endianness and string length block.

    Parameters
    ----------
    file : `io.BufferedIOBase`
        Binary stream positioned at the start of the file.

    Returns
    -------
    byte_order : `str`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.
    """

    position = file.tell()
    data = file.read(16)
    file.seek(position)
    if len(data) < 16:
        raise ShortReadError("The file is too short to contain a block header.")
    for byte_order in "<>":
        length, block_id = struct.unpack(f"{byte_order}qq", data)
        if (
            block_id == BlockID.ENDIANNESS_AND_STRING_LENGTH
            and MIN_BLOCK_LENGTH <= length <= MAX_STR_LEN + 64
        ):
            return byte_order
    raise CorruptHeaderError(
        "The first block is not an endianness and string length block."
    )
