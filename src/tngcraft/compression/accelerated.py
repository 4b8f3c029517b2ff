"""
Accelerated algorithms
======================

This module contains the Numba-accelerated kernels used by the value
codec. All kernels release the GIL so that sibling data blocks can be
compressed concurrently in threads.

Bits are written most significant first within each byte.
"""

import numba
import numpy as np


@numba.njit(nogil=True)
def numba_integer_histogram(
    values: np.ndarray[int], min_: int, n_bins: int
) -> np.ndarray[int]:
    r"""
    Serial Numba-accelerated function to count the occurrences of each
    integer in a one-dimensional NumPy array :math:`\mathbf{a}` whose
    values lie in :math:`[m,\,m+N_\mathrm{bins})`.

    Parameters
    ----------
    values : `np.ndarray`
        One-dimensional integer array :math:`\mathbf{a}`.

    min_ : `int`
        Smallest value :math:`m` in the array.

    n_bins : `int`
        Number of bins :math:`N_\mathrm{bins}`.

    Returns
    -------
    histogram_ : `np.ndarray`
        Number of occurrences of :math:`m+i` at index :math:`i`.
    """

    histogram_ = np.zeros(n_bins, dtype=np.int64)
    for x in values:
        histogram_[x - min_] += 1
    return histogram_


@numba.njit(nogil=True)
def numba_pack_fixed_width(values: np.ndarray[int], width: int) -> np.ndarray[int]:
    """
    Serial Numba-accelerated function to pack non-negative integers
    into consecutive fields of `width` bits.

    Parameters
    ----------
    values : `np.ndarray`
        One-dimensional array of non-negative integers, each smaller
        than :math:`2^\\mathrm{width}`. Only the low `width` bits of
        each value are written, so 64-bit fields may hold negative
        integers.

    width : `int`
        Number of bits per value.

    Returns
    -------
    buffer : `np.ndarray`
        Packed bits.
    """

    buffer = np.zeros((values.shape[0] * width + 7) // 8, dtype=np.uint8)
    bit = 0
    for x in values:
        for i in range(width - 1, -1, -1):
            if (x >> i) & 1:
                buffer[bit >> 3] = buffer[bit >> 3] | (0x80 >> (bit & 7))
            bit += 1
    return buffer


@numba.njit(nogil=True)
def numba_unpack_fixed_width(
    buffer: np.ndarray[int], n_values: int, width: int
) -> np.ndarray[int]:
    """
    Serial Numba-accelerated function to unpack integers stored in
    consecutive fields of `width` bits.

    Parameters
    ----------
    buffer : `np.ndarray`
        Packed bits. Must hold at least :math:`n\\times\\mathrm{width}`
        bits.

    n_values : `int`
        Number of values :math:`n` to unpack.

    width : `int`
        Number of bits per value.

    Returns
    -------
    values : `np.ndarray`
        Unpacked integers. 64-bit fields are returned as signed
        integers with the same bits.
    """

    values = np.zeros(n_values, dtype=np.int64)
    bit = 0
    for j in range(n_values):
        x = 0
        for _ in range(width):
            x = (x << 1) | ((np.int64(buffer[bit >> 3]) >> (7 - (bit & 7))) & 1)
            bit += 1
        values[j] = x
    return values


@numba.njit(nogil=True)
def numba_pack_codes(
    indices: np.ndarray[int], codes: np.ndarray[int], lengths: np.ndarray[int]
) -> tuple[np.ndarray[int], int]:
    """
    Serial Numba-accelerated function to write the prefix-free codes of
    a sequence of dictionary symbols.

    Parameters
    ----------
    indices : `np.ndarray`
        Dictionary index of each symbol to write.

    codes : `np.ndarray`
        Code of each dictionary entry.

    lengths : `np.ndarray`
        Code length of each dictionary entry, in bits.

    Returns
    -------
    buffer : `np.ndarray`
        Packed codes.

    n_bits : `int`
        Number of meaningful bits in `buffer`.
    """

    n_bits = 0
    for k in indices:
        n_bits += lengths[k]
    buffer = np.zeros((n_bits + 7) // 8, dtype=np.uint8)
    bit = 0
    for k in indices:
        code = codes[k]
        for i in range(lengths[k] - 1, -1, -1):
            if (code >> i) & 1:
                buffer[bit >> 3] = buffer[bit >> 3] | (0x80 >> (bit & 7))
            bit += 1
    return buffer, n_bits


@numba.njit(nogil=True)
def numba_unpack_codes(
    buffer: np.ndarray[int],
    n_bits: int,
    n_values: int,
    first_codes: np.ndarray[int],
    counts: np.ndarray[int],
    offsets: np.ndarray[int],
    sorted_symbols: np.ndarray[int],
) -> tuple[np.ndarray[int], int]:
    """
    Serial Numba-accelerated function to decode canonical prefix-free
    codes.

    Parameters
    ----------
    buffer : `np.ndarray`
        Packed codes.

    n_bits : `int`
        Number of meaningful bits in `buffer`.

    n_values : `int`
        Number of symbols to decode.

    first_codes : `np.ndarray`
        First canonical code of each code length.

    counts : `np.ndarray`
        Number of codes of each code length.

    offsets : `np.ndarray`
        Index in `sorted_symbols` of the first symbol of each code
        length.

    sorted_symbols : `np.ndarray`
        Dictionary symbols sorted by code length and then by value.

    Returns
    -------
    values : `np.ndarray`
        Decoded symbols.

    status : `int`
        Number of bits consumed, :code:`-1` if the buffer ended before
        all symbols were decoded, or :code:`-2` if a bit sequence does
        not match any code.
    """

    max_length = counts.shape[0] - 1
    values = np.zeros(n_values, dtype=np.int64)
    bit = 0
    for j in range(n_values):
        code = 0
        found = False
        for length in range(1, max_length + 1):
            if bit >= n_bits:
                return values, -1
            code = (code << 1) | ((np.int64(buffer[bit >> 3]) >> (7 - (bit & 7))) & 1)
            bit += 1
            index = code - first_codes[length]
            if index >= 0 and index < counts[length]:
                values[j] = sorted_symbols[offsets[length] + index]
                found = True
                break
        if not found:
            return values, -2
    return values, bit
