"""
Value codec
===========

This module contains the lossless integer codec used for compressed
data block payloads.

Four interchangeable algorithms are available (see
:class:`tngcraft.compression.Algorithm`):

* **Fixed width.** Values are shifted by their minimum and packed in
  the smallest number of bits that can hold the range.
* **Dictionary.** Values are coded with a canonical prefix-free
  dictionary built from their histogram.
* **Inter-frame delta.** Differences between successive frames are
  dictionary coded.
* **Intra-frame triple.** Differences between the value tuples (e.g.
  :math:`x`, :math:`y`, and :math:`z` coordinates) of successive
  particles in each frame are dictionary coded.

The first axis of the value array is always the frame axis and the last
axis holds the values of one particle, so the array shapes used by the
data blocks, :math:`(N_\\mathrm{frames},\\,N_\\mathrm{values})` and
:math:`(N_\\mathrm{frames},\\,N_\\mathrm{particles},\\,N_\\mathrm{values})`,
can be passed directly.
"""

from math import prod
import struct
from typing import Any

import numpy as np

from . import Algorithm, DICTIONARY_ALGORITHMS, MAX_FIXED_WIDTH
from .accelerated import (
    numba_pack_codes,
    numba_pack_fixed_width,
    numba_unpack_codes,
    numba_unpack_fixed_width,
)
from .dictionary import CanonicalDictionary, build_histogram, canonical_dict
from ..errors import CodecError

BEST = "best"


def _resolve_algorithm(algorithm: int | str | None) -> Algorithm | None:
    """
    Converts an algorithm ID or name into an :class:`Algorithm`, or
    `None` for the "best of" selection.
    """

    if algorithm is None or algorithm == BEST:
        return None
    try:
        if isinstance(algorithm, str):
            return Algorithm[algorithm.upper()]
        return Algorithm(algorithm)
    except (KeyError, ValueError):
        raise CodecError(
            f"Unrecognized codec algorithm {algorithm!r}.", algorithm=algorithm
        ) from None


def _as_integers(values: Any) -> np.ndarray[int]:
    values = np.atleast_1d(np.asarray(values))
    if values.dtype.kind not in "iu":
        raise CodecError(
            "The value codec only operates on integers, but values of type "
            f"'{values.dtype}' were given."
        )
    if (
        values.dtype == np.uint64
        and values.size
        and values.max() > np.iinfo(np.int64).max
    ):
        raise CodecError("Unsigned values larger than 2^63 - 1 cannot be encoded.")
    return np.ascontiguousarray(values, dtype=np.int64)


def _triple_view(values: np.ndarray[int]) -> np.ndarray[int]:
    """
    Views values as (frames, particles, values per particle).
    """

    if values.ndim == 1:
        return values.reshape(1, -1, 1)
    if values.ndim == 2:
        return values.reshape(*values.shape, 1)
    return values.reshape(values.shape[0], -1, values.shape[-1])


def _residuals(values: np.ndarray[int], algorithm: Algorithm) -> np.ndarray[int]:
    """
    Maps values onto the integer sequence that is actually coded.
    Integer overflow wraps around and is undone exactly by
    :func:`_restore`.
    """

    if algorithm == Algorithm.INTER_FRAME_DELTA:
        frames = values.reshape(values.shape[0], -1)
        residuals = frames.copy()
        residuals[1:] -= frames[:-1]
    elif algorithm == Algorithm.INTRA_FRAME_TRIPLE:
        triples = _triple_view(values)
        residuals = triples.copy()
        residuals[:, 1:] -= triples[:, :-1]
    else:
        residuals = values
    return residuals.ravel()


def _restore(
    residuals: np.ndarray[int], shape: tuple[int, ...], algorithm: Algorithm
) -> np.ndarray[int]:
    values = residuals.reshape(shape)
    if algorithm == Algorithm.INTER_FRAME_DELTA:
        values = np.cumsum(values.reshape(shape[0], -1), axis=0)
    elif algorithm == Algorithm.INTRA_FRAME_TRIPLE:
        values = np.cumsum(_triple_view(values), axis=1)
    return values.reshape(shape)


def _encode_fixed_width(
    residuals: np.ndarray[int], shape: tuple[int, ...]
) -> tuple[bytes, dict[str, Any]]:
    if residuals.size:
        offset, max_ = int(residuals.min()), int(residuals.max())
    else:
        offset = max_ = 0
    width = (max_ - offset).bit_length()
    if width > MAX_FIXED_WIDTH:
        raise CodecError(
            f"A value range of {width} bits is too wide for fixed-width packing."
        )

    # Shifted values wrap around to negative integers when the range
    # spans 64 bits, but their low `width` bits are unchanged
    buffer = numba_pack_fixed_width(residuals - np.int64(offset), width)
    return buffer.tobytes(), {
        "algorithm": Algorithm.FIXED_WIDTH,
        "shape": shape,
        "offset": offset,
        "width": width,
    }


def _encode_dictionary(
    residuals: np.ndarray[int], shape: tuple[int, ...], algorithm: Algorithm
) -> tuple[bytes, dict[str, Any]]:
    dictionary = canonical_dict(build_histogram(residuals))
    offset = int(dictionary.symbols[0])
    if (int(dictionary.symbols[-1]) - offset).bit_length() > MAX_FIXED_WIDTH:
        raise CodecError(
            "The dictionary symbol range is too wide to be stored.",
            algorithm=algorithm,
        )
    buffer, n_bits = numba_pack_codes(
        dictionary.index(residuals), dictionary.codes, dictionary.lengths
    )
    return buffer.tobytes(), {
        "algorithm": algorithm,
        "shape": shape,
        "offset": offset,
        "symbols": dictionary.symbols,
        "lengths": dictionary.lengths.astype(np.uint8),
        "n_bits": int(n_bits),
    }


def _encode_with(
    values: np.ndarray[int], algorithm: Algorithm
) -> tuple[bytes, dict[str, Any]]:
    shape = tuple(values.shape)
    if algorithm == Algorithm.FIXED_WIDTH:
        return _encode_fixed_width(values.ravel(), shape)
    if values.size == 0:
        raise CodecError(
            f"The {algorithm.name} algorithm cannot encode an empty sequence.",
            algorithm=algorithm,
        )
    return _encode_dictionary(_residuals(values, algorithm), shape, algorithm)


def encode(
    values: Any, algorithm: int | str | None = BEST
) -> tuple[bytes, dict[str, Any]]:
    """
    Encodes integer values into a bitstream.

    Parameters
    ----------
    values : array-like
        Integer values. The first axis is the frame axis and the last
        axis holds the values of one particle.

    algorithm : `int`, `str`, or `None`, default: :code:`"best"`
        Algorithm ID or name. If :code:`"best"` or `None`, every
        applicable algorithm is tried and the one with the smallest
        output is kept, with ties going to the lowest algorithm ID.

    Returns
    -------
    bitstream : `bytes`
        Packed bits.

    metadata : `dict`
        Information needed to invert the encoding: the algorithm ID,
        the value array shape, the value offset, and either the field
        width or the dictionary symbols, code lengths, and number of
        bits.
    """

    values = _as_integers(values)
    algorithm = _resolve_algorithm(algorithm)
    if algorithm is not None:
        return _encode_with(values, algorithm)

    best = None
    for candidate in Algorithm:
        try:
            bitstream, metadata = _encode_with(values, candidate)
        except CodecError:
            continue
        size = encoded_size(bitstream, metadata)
        if best is None or size < best[0]:
            best = (size, bitstream, metadata)
    if best is None:
        raise CodecError("No codec algorithm can encode the values.")
    return best[1], best[2]


def decode(
    bitstream: bytes, metadata: dict[str, Any], n_values: int | None = None
) -> np.ndarray[int]:
    """
    Decodes a bitstream produced by :func:`encode`.

    Parameters
    ----------
    bitstream : `bytes`
        Packed bits.

    metadata : `dict`
        Encoding information returned by :func:`encode`.

    n_values : `int`, optional
        Expected number of values. If specified, the value array shape
        in `metadata` is checked against it before any memory is
        allocated.

    Returns
    -------
    values : `numpy.ndarray`
        Decoded integer values.
    """

    try:
        algorithm = Algorithm(metadata["algorithm"])
    except (KeyError, ValueError):
        raise CodecError(
            f"Unrecognized codec algorithm {metadata.get('algorithm')!r}."
        ) from None
    shape = tuple(int(s) for s in metadata["shape"])
    if any(s < 0 for s in shape):
        raise CodecError("The value array shape has a negative dimension.")
    n_declared = prod(shape)
    if n_values is not None and n_declared != n_values:
        raise CodecError(
            f"The bitstream holds {n_declared:,} values, but {n_values:,} "
            "were expected.",
            algorithm=algorithm,
        )
    n_values = n_declared
    offset = np.int64(metadata["offset"])
    buffer = np.frombuffer(bitstream, dtype=np.uint8)

    if algorithm == Algorithm.FIXED_WIDTH:
        width = int(metadata["width"])
        if not 0 <= width <= MAX_FIXED_WIDTH:
            raise CodecError(f"Invalid fixed-width field of {width} bits.")
        if buffer.shape[0] < (n_values * width + 7) // 8:
            raise CodecError(
                "The bitstream is shorter than the length implied by its "
                "metadata.",
                algorithm=algorithm,
            )
        return _restore(
            numba_unpack_fixed_width(buffer, n_values, width) + offset,
            shape,
            algorithm,
        )

    dictionary = CanonicalDictionary.from_lengths(
        metadata["symbols"], metadata["lengths"]
    )
    n_bits = int(metadata["n_bits"])

    # Every code takes at least one bit
    if buffer.shape[0] * 8 < n_bits or n_bits < n_values:
        raise CodecError(
            "The bitstream is shorter than the length implied by its metadata.",
            algorithm=algorithm,
        )
    tables = dictionary.decoding_tables()
    residuals, status = numba_unpack_codes(
        buffer,
        n_bits,
        n_values,
        tables["first_codes"],
        tables["counts"],
        tables["offsets"],
        tables["sorted_symbols"],
    )
    if status == -1:
        raise CodecError(
            "The bitstream ended before all values were decoded.",
            algorithm=algorithm,
        )
    if status == -2:
        raise CodecError(
            "The bitstream contains a code outside of the dictionary.",
            algorithm=algorithm,
        )
    return _restore(residuals, shape, algorithm)


def encoded_size(bitstream: bytes, metadata: dict[str, Any]) -> int:
    """
    Number of bytes taken by the serialized metadata and bitstream.

    Parameters
    ----------
    bitstream : `bytes`
        Packed bits.

    metadata : `dict`
        Encoding information returned by :func:`encode`.

    Returns
    -------
    size : `int`
        Size of the output of :func:`serialize`.
    """

    size = 10 + 8 * len(metadata["shape"]) + len(bitstream)
    if metadata["algorithm"] in DICTIONARY_ALGORITHMS:
        n_dict = len(metadata["symbols"])
        symbol_width = (int(metadata["symbols"][-1]) - metadata["offset"]).bit_length()
        return size + 13 + (n_dict * symbol_width + 7) // 8 + n_dict
    return size + 9


def serialize(
    bitstream: bytes, metadata: dict[str, Any], byte_order: str = "<"
) -> bytes:
    """
    Serializes the encoding metadata followed by the bitstream.

    Parameters
    ----------
    bitstream : `bytes`
        Packed bits.

    metadata : `dict`
        Encoding information returned by :func:`encode`.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    data : `bytes`
        Serialized codec stream.
    """

    shape = metadata["shape"]
    parts = [
        struct.pack(f"{byte_order}BB", metadata["algorithm"], len(shape)),
        np.asarray(shape, dtype=f"{byte_order}i8").tobytes(),
        struct.pack(f"{byte_order}q", metadata["offset"]),
    ]
    if metadata["algorithm"] in DICTIONARY_ALGORITHMS:
        symbols = np.asarray(metadata["symbols"], dtype=np.int64)
        offset = np.int64(metadata["offset"])
        symbol_width = (int(symbols[-1]) - int(offset)).bit_length()
        parts.extend(
            (
                struct.pack(f"{byte_order}IB", symbols.shape[0], symbol_width),
                numba_pack_fixed_width(symbols - offset, symbol_width).tobytes(),
                np.asarray(metadata["lengths"], dtype=np.uint8).tobytes(),
                struct.pack(f"{byte_order}q", metadata["n_bits"]),
            )
        )
    else:
        parts.append(
            struct.pack(f"{byte_order}Bq", metadata["width"], len(bitstream))
        )
    parts.append(bitstream)
    return b"".join(parts)


def deserialize(
    data: bytes, byte_order: str = "<"
) -> tuple[bytes, dict[str, Any], int]:
    """
    Deserializes a codec stream written by :func:`serialize`.

    Parameters
    ----------
    data : `bytes`
        Serialized codec stream, possibly followed by other data.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    bitstream : `bytes`
        Packed bits.

    metadata : `dict`
        Encoding information.

    end : `int`
        Number of bytes of `data` consumed.
    """

    data = memoryview(data)

    def take(n: int) -> memoryview:
        nonlocal cursor
        if cursor + n > len(data):
            raise CodecError(
                "The codec stream is shorter than the length implied by its "
                "metadata."
            )
        chunk = data[cursor : cursor + n]
        cursor += n
        return chunk

    cursor = 0
    algorithm_id, ndim = struct.unpack(f"{byte_order}BB", take(2))
    try:
        algorithm = Algorithm(algorithm_id)
    except ValueError:
        raise CodecError(
            f"Unrecognized codec algorithm {algorithm_id}.", algorithm=algorithm_id
        ) from None
    shape = tuple(
        int(s) for s in np.frombuffer(take(8 * ndim), dtype=f"{byte_order}i8")
    )
    if any(s < 0 for s in shape):
        raise CodecError("The codec stream declares a negative array dimension.")
    (offset,) = struct.unpack(f"{byte_order}q", take(8))
    metadata = {"algorithm": algorithm, "shape": shape, "offset": offset}

    if algorithm in DICTIONARY_ALGORITHMS:
        n_dict, symbol_width = struct.unpack(f"{byte_order}IB", take(5))
        if n_dict == 0 or symbol_width > MAX_FIXED_WIDTH:
            raise CodecError("The codec stream declares an invalid dictionary.")
        packed = np.frombuffer(
            take((n_dict * symbol_width + 7) // 8), dtype=np.uint8
        )
        metadata["symbols"] = (
            numba_unpack_fixed_width(packed, n_dict, symbol_width) + np.int64(offset)
        )
        metadata["lengths"] = np.frombuffer(take(n_dict), dtype=np.uint8).copy()
        (metadata["n_bits"],) = struct.unpack(f"{byte_order}q", take(8))
        if metadata["n_bits"] < 0:
            raise CodecError("The codec stream declares a negative bit count.")
        n_bytes = (metadata["n_bits"] + 7) // 8
    else:
        metadata["width"], n_bytes = struct.unpack(f"{byte_order}Bq", take(9))
        if n_bytes < 0:
            raise CodecError("The codec stream declares a negative byte count.")
    return bytes(take(n_bytes)), metadata, cursor


def pack(
    values: Any, algorithm: int | str | None = BEST, byte_order: str = "<"
) -> bytes:
    """
    Encodes and serializes integer values.

    Parameters
    ----------
    values : array-like
        Integer values.

    algorithm : `int`, `str`, or `None`, default: :code:`"best"`
        Algorithm ID or name. See :func:`encode`.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    data : `bytes`
        Serialized codec stream.
    """

    return serialize(*encode(values, algorithm), byte_order)


def unpack(data: bytes, byte_order: str = "<") -> np.ndarray[int]:
    """
    Deserializes and decodes integer values written by :func:`pack`.

    Parameters
    ----------
    data : `bytes`
        Serialized codec stream.

    byte_order : `str`, default: :code:`"<"`
        :code:`"<"` for little-endian or :code:`">"` for big-endian
        integers.

    Returns
    -------
    values : `numpy.ndarray`
        Decoded integer values.
    """

    bitstream, metadata, _ = deserialize(data, byte_order)
    return decode(bitstream, metadata)
