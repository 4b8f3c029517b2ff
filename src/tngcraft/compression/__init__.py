"""
Value compression
=================

This subpackage contains the integer value codec used for compressed
data block payloads, the canonical dictionary builder it relies on, and
the precision front end that maps floating-point data onto integers.
"""

from enum import IntEnum


class Algorithm(IntEnum):
    """
    Value codec algorithms, in tie-breaking order.
    """

    FIXED_WIDTH = 0
    DICTIONARY = 1
    INTER_FRAME_DELTA = 2
    INTRA_FRAME_TRIPLE = 3


DICTIONARY_ALGORITHMS = {
    Algorithm.DICTIONARY,
    Algorithm.INTER_FRAME_DELTA,
    Algorithm.INTRA_FRAME_TRIPLE,
}

# Number of distinct symbols that fits in a dictionary size field
MAX_DICT_SIZE = 0x20004

# Longest canonical code, in bits
MAX_CODE_LENGTH = 32

# Widest fixed-width field, in bits
MAX_FIXED_WIDTH = 64

# Largest value range for which dense histograms are used
MAX_DENSE_HISTOGRAM_RANGE = 1 << 24
