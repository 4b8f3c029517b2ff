"""
Precision transforms
====================

This module contains the front end that maps floating-point data onto
the integer domain of the value codec and back.

A transform must be invertible to within its precision, i.e.,
:math:`|x-T^{-1}(T(x))|\\leq p/2` for a precision :math:`p`.
"""

from abc import abstractmethod
from numbers import Real

import numpy as np

from .. import Q_, U_
from ..errors import CodecError

# Largest magnitude of a transformed value
MAX_TRANSFORMED_VALUE = 1 << 62


class CoordinateTransform:
    """
    Base class for transforms between floating-point values and
    integers.

    Subclasses must implement the :meth:`forward` and :meth:`inverse`
    methods and the :attr:`precision` property.
    """

    @abstractmethod
    def forward(self, values: np.ndarray[float]) -> np.ndarray[int]:
        """
        Converts floating-point values to integers.
        """

        pass

    @abstractmethod
    def inverse(
        self, values: np.ndarray[int], dtype: type = np.float64
    ) -> np.ndarray[float]:
        """
        Converts integers back to floating-point values.
        """

        pass

    @property
    @abstractmethod
    def precision(self) -> float:
        """
        Largest difference between a value and its round trip, times
        two.
        """

        pass


class PrecisionTransform(CoordinateTransform):
    """
    Uniform quantization: values are divided by the precision and
    rounded to the nearest integer.

    Parameters
    ----------
    precision : `float` or `pint.Quantity`
        Quantization step. If a `pint.Quantity` is given, it is
        converted to `units`.

    units : `pint.Unit`, optional
        Units in which the values are stored. Required if `precision` is
        a `pint.Quantity`.
    """

    def __init__(self, precision: float | Q_, units: U_ | None = None) -> None:
        if isinstance(precision, Q_):
            if units is None:
                raise ValueError(
                    "`units` must be specified when the precision has units."
                )
            precision = precision.m_as(units)
        if not isinstance(precision, Real) or not precision > 0:
            raise ValueError(
                f"The precision must be a positive number, not {precision!r}."
            )
        self._precision = float(precision)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._precision!r})"

    def forward(self, values: np.ndarray[float]) -> np.ndarray[int]:
        scaled = np.rint(np.asarray(values, dtype=np.float64) / self._precision)
        if not np.all(np.isfinite(scaled)):
            raise CodecError("Non-finite values cannot be transformed to integers.")
        if scaled.size and np.abs(scaled).max() > MAX_TRANSFORMED_VALUE:
            raise CodecError(
                f"Values are too large to be stored with a precision of "
                f"{self._precision}."
            )
        return scaled.astype(np.int64)

    def inverse(
        self, values: np.ndarray[int], dtype: type = np.float64
    ) -> np.ndarray[float]:
        return (np.asarray(values, dtype=np.float64) * self._precision).astype(dtype)

    @property
    def precision(self) -> float:
        """
        Quantization step.
        """

        return self._precision
