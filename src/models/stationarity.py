"""KPSS-based selection of the differencing order for ARIMA models.

The KPSS test takes level-stationarity as its null hypothesis, so a
series is differenced only while the test rejects at ``alpha``:

    d = min { k in 0..max_d : KPSS p-value of diff^k(y) >= alpha }

The lag truncation follows the short rule ``trunc(3 * sqrt(n) / 13)``,
which keeps the long-run variance estimate usable on the 10-20 point
annual series this pipeline works with.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
from statsmodels.tsa.stattools import kpss

logger = logging.getLogger(__name__)


def kpss_lags(n: int) -> int:
    """Short-rule lag truncation for a series of length ``n``."""
    return int(np.trunc(3.0 * np.sqrt(n) / 13.0))


def is_constant(values: np.ndarray, atol: float = 1e-12) -> bool:
    """True when a series has (numerically) zero variance."""
    values = np.asarray(values, dtype=float)
    return len(values) == 0 or float(np.ptp(values)) <= atol


def kpss_pvalue(values: np.ndarray) -> float:
    """KPSS level-stationarity p-value.

    statsmodels interpolates the p-value from a table bounded to
    [0.01, 0.10]; values beyond the table are clipped and an
    ``InterpolationWarning`` is raised, which is silenced here.

    Args:
        values: 1-D series with non-zero variance.

    Returns:
        p-value in [0.01, 0.10].
    """
    values = np.asarray(values, dtype=float)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        _, pvalue, _, _ = kpss(values, regression="c", nlags=kpss_lags(len(values)))
    return float(pvalue)


def select_differencing(
    values: np.ndarray,
    alpha: float = 0.05,
    max_d: int = 2,
) -> int:
    """Choose the smallest differencing order that yields a stationary series.

    Args:
        values: 1-D training series.
        alpha: KPSS significance level.
        max_d: Upper bound on the differencing order.

    Returns:
        Differencing order ``d`` in ``[0, max_d]``.
    """
    x = np.asarray(values, dtype=float)
    for d in range(max_d + 1):
        # Too short to test further: stop differencing.
        if is_constant(x) or len(x) < 4:
            return d
        if kpss_pvalue(x) >= alpha:
            return d
        if d < max_d:
            x = np.diff(x)
    logger.debug(f"  KPSS still rejects after {max_d} differences; capping d={max_d}")
    return max_d
