import pathlib
import sys

import numpy as np
import pytest

sys.path.insert(0, f"{pathlib.Path(__file__).parents[1].resolve().as_posix()}/src")
from tngcraft.compression import MAX_CODE_LENGTH, MAX_DICT_SIZE  # noqa: E402
from tngcraft.compression.dictionary import (  # noqa: E402
    CanonicalDictionary,
    Histogram,
    build_histogram,
    canonical_dict,
)
from tngcraft.errors import CodecError, Status  # noqa: E402

rng = np.random.default_rng()


def _is_prefix_free(dictionary: CanonicalDictionary) -> bool:
    codes, lengths = dictionary.codes.tolist(), dictionary.lengths.tolist()
    for i in range(len(codes)):
        for j in range(len(codes)):
            if i != j and lengths[i] <= lengths[j]:
                if codes[j] >> (lengths[j] - lengths[i]) == codes[i]:
                    return False
    return True


def test_func_build_histogram():

    # TEST CASE 1: Counts of distinct values in a small range
    histogram = build_histogram([5, -2, 5, 7, 5, -2])
    assert histogram.as_dict() == {-2: 2, 5: 3, 7: 1}
    assert histogram.n_dict == len(histogram) == 3
    assert histogram[5] == 3
    assert histogram[0] == 0

    # TEST CASE 2: Counts of distinct values in a very wide range
    histogram = build_histogram(np.array([0, 1 << 40, 0, -(1 << 40)]))
    assert histogram.as_dict() == {-(1 << 40): 1, 0: 2, 1 << 40: 1}

    # TEST CASE 3: Multidimensional input is flattened
    values = rng.integers(-50, 50, size=(4, 20, 3))
    histogram = build_histogram(values)
    symbols, counts = np.unique(values, return_counts=True)
    assert np.array_equal(histogram.symbols, symbols)
    assert np.array_equal(histogram.counts, counts)

    # TEST CASE 4: Empty input
    assert build_histogram([]).n_dict == 0


def test_func_canonical_dict():

    # TEST CASE 1: Kraft inequality and prefix-free codes for random
    # histograms
    for _ in range(10):
        values = rng.geometric(rng.uniform(0.05, 0.9), size=rng.integers(1, 500))
        dictionary = canonical_dict(build_histogram(values))
        assert dictionary.kraft_sum() <= 1
        assert _is_prefix_free(dictionary)

    # TEST CASE 2: More frequent symbols get codes that are not longer
    dictionary = canonical_dict(Histogram([1, 2, 3, 4, 5], [100, 50, 10, 5, 1]))
    assert np.all(np.diff(dictionary.lengths) >= 0)
    assert dictionary.lengths[0] == 1

    # TEST CASE 3: Single symbol
    dictionary = canonical_dict(build_histogram([42, 42, 42]))
    assert dictionary.lengths.tolist() == [1]
    assert dictionary.codes.tolist() == [0]

    # TEST CASE 4: Code lengths are limited for very skewed histograms
    fibonacci = [1, 1]
    while len(fibonacci) < 45:
        fibonacci.append(fibonacci[-1] + fibonacci[-2])
    dictionary = canonical_dict(Histogram(np.arange(45), fibonacci))
    assert dictionary.max_length <= MAX_CODE_LENGTH
    assert dictionary.kraft_sum() <= 1

    # TEST CASE 5: Empty histogram
    with pytest.raises(CodecError) as error:
        canonical_dict(build_histogram([]))
    assert error.value.status == Status.FAILURE

    # TEST CASE 6: Too many distinct values
    with pytest.raises(CodecError):
        canonical_dict(
            Histogram(
                np.arange(MAX_DICT_SIZE + 1),
                np.ones(MAX_DICT_SIZE + 1, dtype=int),
            )
        )


def test_class_CanonicalDictionary():

    # TEST CASE 1: Canonical codes assigned in (length, value) order
    dictionary = CanonicalDictionary([1, 2, 3, 4], [2, 1, 3, 3])
    assert dictionary.codes.tolist() == [0b10, 0b0, 0b110, 0b111]
    assert dictionary.kraft_sum() == 1

    # TEST CASE 2: Rebuilding from the ordered length list reproduces
    # the codes
    values = rng.integers(-1000, 1000, size=5000)
    dictionary = canonical_dict(build_histogram(values))
    rebuilt = CanonicalDictionary.from_lengths(dictionary.symbols, dictionary.lengths)
    assert np.array_equal(rebuilt.codes, dictionary.codes)

    # TEST CASE 3: Dictionary indices of symbols
    assert dictionary.index(dictionary.symbols[[3, 0, 7]]).tolist() == [3, 0, 7]
    with pytest.raises(CodecError):
        CanonicalDictionary([0, 2], [1, 1]).index(np.array([1]))

    # TEST CASE 4: Symbols at both ends of the 64-bit range
    int64 = np.iinfo(np.int64)
    dictionary = CanonicalDictionary([int64.min, int64.max], [1, 1])
    assert dictionary.codes.tolist() == [0, 1]

    # TEST CASE 5: Invalid dictionaries
    with pytest.raises(CodecError):
        CanonicalDictionary([0, 1, 2], [1, 1, 1])
    with pytest.raises(CodecError):
        CanonicalDictionary([2, 1], [1, 1])
    with pytest.raises(CodecError):
        CanonicalDictionary([0, 1], [0, 1])
    with pytest.raises(CodecError):
        CanonicalDictionary([0, 1], [1, MAX_CODE_LENGTH + 1])
    with pytest.raises(CodecError):
        CanonicalDictionary([], [])
