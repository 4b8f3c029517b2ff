"""
Canonical dictionaries
======================

This module contains the histogram and canonical prefix-free dictionary
builder used by the dictionary-based codec algorithms.

A canonical dictionary is fully determined by its symbols (in ascending
order) and their code lengths: codes are assigned as consecutive
integers to the symbols sorted by code length and then by value, and are
left-shifted whenever the code length increases. Only one length byte
per symbol therefore needs to be stored.
"""

import heapq
from typing import Any

import numpy as np

from . import MAX_CODE_LENGTH, MAX_DENSE_HISTOGRAM_RANGE, MAX_DICT_SIZE
from .accelerated import numba_integer_histogram
from ..errors import CodecError


class Histogram:
    """
    Frequency histogram of an integer sequence.

    Parameters
    ----------
    symbols : `numpy.ndarray`
        Distinct values, in ascending order.

    counts : `numpy.ndarray`
        Number of occurrences of each distinct value.
    """

    def __init__(self, symbols: np.ndarray[int], counts: np.ndarray[int]) -> None:
        self.symbols = np.asarray(symbols, dtype=np.int64)
        self.counts = np.asarray(counts, dtype=np.int64)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_dict={self.n_dict})"

    def __len__(self) -> int:
        return self.n_dict

    def __getitem__(self, value: int) -> int:
        index = np.searchsorted(self.symbols, value)
        if index < self.n_dict and self.symbols[index] == value:
            return int(self.counts[index])
        return 0

    def as_dict(self) -> dict[int, int]:
        """
        Histogram as a mapping from value to count.
        """

        return dict(zip(self.symbols.tolist(), self.counts.tolist()))

    @property
    def n_dict(self) -> int:
        """
        Number of distinct values.
        """

        return self.symbols.shape[0]


class CanonicalDictionary:
    """
    Canonical prefix-free code table.

    Parameters
    ----------
    symbols : `numpy.ndarray`
        Dictionary symbols, in ascending order.

    lengths : `numpy.ndarray`
        Code length of each symbol, in bits.
    """

    def __init__(self, symbols: np.ndarray[int], lengths: np.ndarray[int]) -> None:
        self.symbols = np.asarray(symbols, dtype=np.int64)
        self.lengths = np.asarray(lengths, dtype=np.int64)
        if self.symbols.shape != self.lengths.shape or self.symbols.ndim != 1:
            raise CodecError(
                "The dictionary symbols and code lengths must be "
                "one-dimensional arrays of the same length."
            )
        if self.symbols.shape[0] == 0:
            raise CodecError("A dictionary must contain at least one symbol.")
        if np.any(self.symbols[1:] <= self.symbols[:-1]):
            raise CodecError("The dictionary symbols must be strictly ascending.")
        if self.lengths.min() < 1 or self.lengths.max() > MAX_CODE_LENGTH:
            raise CodecError(
                f"Code lengths must lie between 1 and {MAX_CODE_LENGTH} bits."
            )
        if self.kraft_sum() > 1:
            raise CodecError(
                "The code lengths violate the Kraft inequality and cannot "
                "form a prefix-free code."
            )

        # Assign canonical codes in (length, value) order
        self.max_length = int(self.lengths.max())
        self._order = np.lexsort((self.symbols, self.lengths))
        self._counts = np.bincount(self.lengths, minlength=self.max_length + 1)
        self._counts[0] = 0
        self._first_codes = np.zeros(self.max_length + 1, dtype=np.int64)
        code = 0
        for length in range(1, self.max_length + 1):
            code = (code + int(self._counts[length - 1])) << 1
            self._first_codes[length] = code
        self._offsets = np.zeros(self.max_length + 1, dtype=np.int64)
        self._offsets[1:] = np.cumsum(self._counts)[:-1]
        self.codes = np.empty_like(self.lengths)
        sorted_lengths = self.lengths[self._order]
        self.codes[self._order] = (
            self._first_codes[sorted_lengths]
            + np.arange(self.n_dict)
            - self._offsets[sorted_lengths]
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_dict={self.n_dict}, "
            f"max_length={self.max_length})"
        )

    def __len__(self) -> int:
        return self.n_dict

    @classmethod
    def from_lengths(
        cls, symbols: np.ndarray[int], lengths: np.ndarray[int]
    ) -> "CanonicalDictionary":
        """
        Rebuilds a code table from the ordered code length list alone.

        Parameters
        ----------
        symbols : `numpy.ndarray`
            Dictionary symbols, in ascending order.

        lengths : `numpy.ndarray`
            Code length of each symbol, in bits.

        Returns
        -------
        dictionary : `CanonicalDictionary`
            Canonical dictionary.
        """

        return cls(symbols, lengths)

    def kraft_sum(self) -> float:
        r"""
        Left-hand side of the Kraft inequality,
        :math:`\sum_i2^{-\ell_i}`.
        """

        return float(np.sum(2.0 ** -self.lengths))

    def index(self, values: np.ndarray[int]) -> np.ndarray[int]:
        """
        Finds the dictionary index of each value.

        Parameters
        ----------
        values : `numpy.ndarray`
            Values to look up. All must be dictionary symbols.

        Returns
        -------
        indices : `numpy.ndarray`
            Dictionary indices.
        """

        indices = np.searchsorted(self.symbols, values)
        if values.size and (
            indices.max() >= self.n_dict or np.any(self.symbols[indices] != values)
        ):
            raise CodecError("Values outside of the dictionary cannot be encoded.")
        return indices

    def decoding_tables(self) -> dict[str, np.ndarray[int]]:
        """
        Tables needed to decode canonical codes one bit at a time.

        Returns
        -------
        tables : `dict`
            First code, number of codes, and symbol offset for each code
            length, and the symbols sorted by code length and value.
        """

        return {
            "first_codes": self._first_codes,
            "counts": self._counts.astype(np.int64),
            "offsets": self._offsets,
            "sorted_symbols": self.symbols[self._order],
        }

    @property
    def n_dict(self) -> int:
        """
        Number of symbols in the dictionary.
        """

        return self.symbols.shape[0]


def build_histogram(values: Any) -> Histogram:
    """
    Counts the occurrences of each distinct integer in a sequence.

    Parameters
    ----------
    values : array-like
        Integer values. Multidimensional arrays are flattened.

    Returns
    -------
    histogram : `Histogram`
        Frequency histogram.
    """

    values = np.ascontiguousarray(values, dtype=np.int64).ravel()
    if values.size == 0:
        return Histogram(np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64))
    min_, max_ = int(values.min()), int(values.max())
    if max_ - min_ < MAX_DENSE_HISTOGRAM_RANGE:
        counts = numba_integer_histogram(values, min_, max_ - min_ + 1)
        present = np.flatnonzero(counts)
        return Histogram(present + min_, counts[present])
    return Histogram(*np.unique(values, return_counts=True))


def _huffman_lengths(counts: np.ndarray[int]) -> np.ndarray[int]:
    """
    Computes Huffman code lengths. Ties between subtrees of equal weight
    are broken by the smallest symbol they contain.
    """

    n = counts.shape[0]
    if n == 1:
        return np.ones(1, dtype=np.int64)
    heap = [(int(c), i, i) for i, c in enumerate(counts)]
    heapq.heapify(heap)
    parents = np.empty(2 * n - 1, dtype=np.int64)
    node = n
    while len(heap) > 1:
        weight_1, tie_1, child_1 = heapq.heappop(heap)
        weight_2, tie_2, child_2 = heapq.heappop(heap)
        parents[child_1] = parents[child_2] = node
        heapq.heappush(heap, (weight_1 + weight_2, min(tie_1, tie_2), node))
        node += 1

    # Parents always have larger node numbers than their children
    depths = np.zeros(2 * n - 1, dtype=np.int64)
    for k in range(2 * n - 3, -1, -1):
        depths[k] = depths[parents[k]] + 1
    return depths[:n]


def canonical_dict(histogram: Histogram) -> CanonicalDictionary:
    """
    Derives a canonical prefix-free dictionary from a histogram. More
    frequent symbols get shorter codes.

    Parameters
    ----------
    histogram : `Histogram`
        Frequency histogram.

    Returns
    -------
    dictionary : `CanonicalDictionary`
        Canonical dictionary.
    """

    if histogram.n_dict == 0:
        raise CodecError("Cannot build a dictionary from an empty histogram.")
    if histogram.n_dict > MAX_DICT_SIZE:
        raise CodecError(
            f"{histogram.n_dict:,} distinct values exceed the dictionary "
            f"size limit of {MAX_DICT_SIZE:,}."
        )

    # Flatten the frequency distribution until the longest code fits
    counts = histogram.counts.copy()
    lengths = _huffman_lengths(counts)
    while lengths.max() > MAX_CODE_LENGTH:
        counts = (counts + 1) // 2
        lengths = _huffman_lengths(counts)
    return CanonicalDictionary(histogram.symbols, lengths)
