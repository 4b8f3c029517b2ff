"""
File header blocks
==================

This module contains the blocks written once at the start of a TNG
file: the endianness and string length block, which must come first,
and the general information block.
"""

from datetime import datetime
import getpass
import platform
import time

from . import (
    FORMAT_VERSION,
    MAX_STR_LEN,
    NO_NEIGHBOR,
    BlockID,
    BlockType,
)
from .block import Block, PayloadBuilder, PayloadParser
from .. import __version__
from ..errors import MalformedPayloadError

# Endianness codes of 32- and 64-bit integers
_ENDIANNESS_CODES = {">": 0, "<": 1}


def endianness_block(byte_order: str) -> Block:
    """
    Creates the endianness and string length block.

    Parameters
    ----------
    byte_order : `str`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    block : `Block`
        Endianness and string length block.
    """

    code = _ENDIANNESS_CODES[byte_order]
    payload = (
        PayloadBuilder(byte_order)
        .uint8(code)
        .uint8(code)
        .int64(MAX_STR_LEN)
        .int64(FORMAT_VERSION)
        .getvalue()
    )
    return Block(
        BlockID.ENDIANNESS_AND_STRING_LENGTH,
        payload,
        block_type=BlockType.NON_TRAJECTORY,
    )


def parse_endianness_block(block: Block, byte_order: str) -> dict[str, int]:
    """
    Parses and checks the endianness and string length block.

    Parameters
    ----------
    block : `Block`
        Endianness and string length block.

    byte_order : `str`
        Byte order detected from the block header.

    Returns
    -------
    info : `dict`
        Maximum string length and file format version.
    """

    parser = PayloadParser(block.payload, byte_order, block.block_id)
    code_32, code_64 = parser.uint8(), parser.uint8()
    if code_32 != _ENDIANNESS_CODES[byte_order] or code_64 != code_32:
        raise MalformedPayloadError(
            "The declared endianness does not match the block header.",
            block_id=block.block_id,
        )
    return {"max_str_len": parser.int64(), "version": parser.int64()}


class GeneralInfo:
    """
    Global metadata of a trajectory.

    The file positions of the first and last frame sets are updated
    every time a frame set is written, so this block is rewritten in
    place and must keep its length.

    Parameters
    ----------
    **kwargs
        Initial values for any of the attributes listed in
        :attr:`STRING_FIELDS` and :attr:`INTEGER_FIELDS`.
    """

    STRING_FIELDS = (
        "first_program_name",
        "last_program_name",
        "first_user_name",
        "last_user_name",
        "first_computer_name",
        "last_computer_name",
        "first_pgp_signature",
        "last_pgp_signature",
        "forcefield_name",
    )
    INTEGER_FIELDS = (
        "time",
        "var_n_atoms",
        "frame_set_n_frames",
        "first_frame_set_pos",
        "last_frame_set_pos",
        "medium_stride_length",
        "long_stride_length",
    )

    def __init__(self, **kwargs) -> None:
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = ""
        self.first_program_name = self.last_program_name = f"TNGCraft {__version__}"
        self.first_user_name = self.last_user_name = user
        self.first_computer_name = self.last_computer_name = platform.node()
        self.first_pgp_signature = self.last_pgp_signature = ""
        self.forcefield_name = ""
        self.time = int(time.time())
        self.var_n_atoms = 0
        self.frame_set_n_frames = 100
        self.first_frame_set_pos = self.last_frame_set_pos = NO_NEIGHBOR
        self.medium_stride_length = 100
        self.long_stride_length = 10000
        for key, value in kwargs.items():
            if key not in self.STRING_FIELDS + self.INTEGER_FIELDS:
                raise TypeError(f"Invalid general information field '{key}'.")
            setattr(self, key, value)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"first_program_name={self.first_program_name!r}, "
            f"frame_set_n_frames={self.frame_set_n_frames})"
        )

    @property
    def time_str(self) -> str:
        """
        Date and time of initial file creation in ISO format.
        """

        return datetime.fromtimestamp(self.time).isoformat(sep=" ")

    def to_block(self, byte_order: str = "<") -> Block:
        """
        Creates the general information block.
        """

        builder = PayloadBuilder(byte_order)
        for field in self.STRING_FIELDS:
            builder.string(getattr(self, field))
        for field in self.INTEGER_FIELDS:
            builder.int64(getattr(self, field))
        return Block(
            BlockID.GENERAL_INFO,
            builder.getvalue(),
            block_type=BlockType.NON_TRAJECTORY,
        )

    @classmethod
    def from_block(cls, block: Block, byte_order: str = "<") -> "GeneralInfo":
        """
        Parses the general information block.
        """

        parser = PayloadParser(block.payload, byte_order, block.block_id)
        fields = {f: parser.string() for f in cls.STRING_FIELDS}
        fields |= {f: parser.int64() for f in cls.INTEGER_FIELDS}
        return cls(**fields)
