from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence, Union

import numpy as np

from numba_utils import dcov_sq

ArrayLike = Union[Sequence[float], np.ndarray]


@dataclass
class SamplePair:
    x: np.ndarray = field(repr=False)
    y: np.ndarray = field(repr=False)

    def __post_init__(self):

        self.x = np.ascontiguousarray(self.x, dtype=np.float64)
        self.y = np.ascontiguousarray(self.y, dtype=np.float64)

        if self.x.ndim != 1 or self.y.ndim != 1:
            raise ValueError(f"Expected 1-d samples, got shapes {self.x.shape} and {self.y.shape}")
        if self.x.shape[0] != self.y.shape[0]:
            raise ValueError(f"Samples must have equal length, got {self.x.shape[0]} and {self.y.shape[0]}")
        if self.x.shape[0] == 0:
            raise ValueError("Samples must not be empty")

    @property
    def n(self) -> int:
        return self.x.shape[0]


@dataclass
class DistanceStats:
    dcov: float
    dvar_x: float
    dvar_y: float
    dcor: float
    n: int


def _to_dcov(covsq: float, clamp: bool = True) -> float:
    """
    Square root of the squared distance covariance.

    clamp=True maps rounding residue below zero to 0.0, clamp=False keeps
    the raw value, so a negative covsq gives NaN.
    """
    if clamp and covsq < 0.0:
        covsq = 0.0
    with np.errstate(invalid="ignore"):
        return float(np.sqrt(np.float64(covsq)))


def _dcor(dcov_xy: float, dvar_x: float, dvar_y: float) -> float:
    # constant sample -> 0 / 0 -> nan
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.float64(dcov_xy) / np.sqrt(np.float64(dvar_x) * np.float64(dvar_y)))


def distance_covariance(x: ArrayLike, y: ArrayLike, clamp: bool = True) -> float:
    """Sample distance covariance of x and y, O(n log n)."""
    s = SamplePair(x, y)
    return _to_dcov(dcov_sq(s.x, s.y), clamp)


def distance_stats(x: ArrayLike, y: ArrayLike, clamp: bool = True, parallel: bool = True) -> DistanceStats:
    """
    dCov(x, y), dVar(x), dVar(y) and dCor(x, y) from three independent
    covariance evaluations. With parallel=True they run on a thread pool
    and are joined before the final division.
    """
    s = SamplePair(x, y)
    args = [(s.x, s.x), (s.x, s.y), (s.y, s.y)]

    if parallel:
        with ThreadPoolExecutor(max_workers=3) as pool:
            futures = [pool.submit(dcov_sq, a, b) for a, b in args]
            covsq = [fut.result() for fut in futures]
    else:
        covsq = [dcov_sq(a, b) for a, b in args]

    dvar_x, dcov_xy, dvar_y = (_to_dcov(c, clamp) for c in covsq)

    return DistanceStats(
        dcov=dcov_xy,
        dvar_x=dvar_x,
        dvar_y=dvar_y,
        dcor=_dcor(dcov_xy, dvar_x, dvar_y),
        n=s.n,
    )


def distance_correlation(x: ArrayLike, y: ArrayLike, clamp: bool = True, parallel: bool = True) -> float:
    """Distance correlation of x and y. NaN when either sample is constant."""
    return distance_stats(x, y, clamp=clamp, parallel=parallel).dcor

