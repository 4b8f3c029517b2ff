from enum import IntEnum

import numpy as np

from .. import ureg

# Version of the file format
FORMAT_VERSION = 1

# Maximum length of a string, including the null terminator
MAX_STR_LEN = 1024

# Length of an MD5 digest
HASH_LEN = 16

# File position of a neighbor that does not exist
NO_NEIGHBOR = -1

# First ID of the trajectory data blocks
FIRST_DATA_BLOCK_ID = 10000


class BlockID(IntEnum):
    """
    Block IDs (kind tags) with a predefined meaning.
    """

    ENDIANNESS_AND_STRING_LENGTH = 0
    GENERAL_INFO = 1
    MOLECULES = 2
    TRAJECTORY_IDS_AND_NAMES = 3
    TRAJECTORY_FRAME_SET = 4
    BLOCK_TABLE_OF_CONTENTS = 5
    PARTICLE_MAPPING = 6
    BOX_SHAPE = 10000
    POSITIONS = 10001
    VELOCITIES = 10002
    FORCES = 10003


STRUCTURAL_BLOCK_IDS = frozenset(b for b in BlockID if b < FIRST_DATA_BLOCK_ID)


class BlockType(IntEnum):
    """
    Whether a block belongs to the file as a whole or to a frame set.
    """

    NON_TRAJECTORY = 0
    TRAJECTORY = 1


class DataType(IntEnum):
    """
    Element type of data block values.
    """

    CHAR = 0
    INT = 1
    FLOAT = 2
    DOUBLE = 3


DTYPES = {
    DataType.CHAR: np.dtype(object),
    DataType.INT: np.dtype(np.int64),
    DataType.FLOAT: np.dtype(np.float32),
    DataType.DOUBLE: np.dtype(np.float64),
}


class CodecID(IntEnum):
    """
    Compression applied to data block values.
    """

    UNCOMPRESSED = 0
    XTC = 1
    TNG = 2


class Dependency(IntEnum):
    """
    Bit flags describing what a data block depends on.
    """

    PARTICLE_DEPENDENT = 1
    FRAME_DEPENDENT = 2


class HashMode(IntEnum):
    """
    Whether MD5 digests are generated on write and verified on read.
    """

    SKIP = 0
    USE = 1


ENDIANNESS = {"little": "<", "big": ">"}

INTERNAL_UNITS = {
    "energy": ureg.kilojoule / ureg.mole,
    "length": ureg.nanometer,
    "time": ureg.picosecond,
}

BLOCK_UNITS = {
    BlockID.BOX_SHAPE: INTERNAL_UNITS["length"],
    BlockID.POSITIONS: INTERNAL_UNITS["length"],
    BlockID.VELOCITIES: INTERNAL_UNITS["length"] / INTERNAL_UNITS["time"],
    BlockID.FORCES: INTERNAL_UNITS["energy"] / INTERNAL_UNITS["length"],
}
