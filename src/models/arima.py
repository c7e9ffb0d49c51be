"""Automatic non-seasonal ARIMA model for annual coverage series.

ARIMA(p, d, q) models the d-times differenced series as an ARMA process:

    phi(B) * (1 - B)^d * y_t = c + theta(B) * eps_t

    where:
        phi(B)   = 1 - phi_1*B - ... - phi_p*B^p        (AR polynomial)
        theta(B) = 1 + theta_1*B + ... + theta_q*B^q     (MA polynomial)
        B        = backshift operator: B*y_t = y_{t-1}
        c        = constant (d = 0) or drift (d = 1)
        eps_t    ~ N(0, sigma^2)

Order selection:
    1. d is chosen by repeated KPSS testing (see ``stationarity.py``).
    2. Given d, every (p, q) in a bounded grid is fit by maximum
       likelihood. Candidates whose optimizer fails are dropped.
    3. The candidate with the lowest AIC wins; ties go to the model with
       fewer ARMA terms, then to the one without a trend term.
    4. If no candidate converges, the naive ARIMA(0, d, 0) is used.

Annual data carries no seasonality, so no seasonal terms are ever fit.

Forecast intervals assume normal errors:

    lower, upper = mean -/+ z_{(1 + level) / 2} * se_k

where se_k is the k-step forecast standard error from the state-space
filter, which is non-decreasing in k.

Two degenerate shapes bypass the likelihood search because their
likelihood is unbounded: a constant series (ARIMA(0,0,0), forecast equal
to the constant) and a series whose d-th difference is constant (exact
polynomial extrapolation). Both get zero-width intervals.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from scipy.stats import norm
from statsmodels.tsa.arima.model import ARIMA

from src.models.stationarity import is_constant, select_differencing

logger = logging.getLogger(__name__)

MAX_HORIZON = 2


class ModelNonConvergenceError(RuntimeError):
    """Raised when no usable ARIMA model could be produced for a series."""


@dataclass(frozen=True)
class FittedModel:
    """Selected model for one country, consumed only by the forecaster."""

    iso_code: str
    order: tuple[int, int, int]
    method: str
    trend: str
    train_values: np.ndarray
    result: Any | None = None  # statsmodels ARIMAResults, None for deterministic fits
    aic: float = float("nan")
    fallback: bool = False
    n_candidates: int = 0
    n_failed: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


def method_label(order: tuple[int, int, int], trend: str) -> str:
    """Human-readable model label, e.g. ``ARIMA(0,1,1) with drift``."""
    p, d, q = order
    label = f"ARIMA({p},{d},{q})"
    if trend == "c" and d == 0:
        label += " with non-zero mean"
    elif trend == "t" and d == 1:
        label += " with drift"
    return label


def _trend_options(d: int) -> list[str]:
    """Trend terms that survive d-fold differencing in statsmodels' ARIMA."""
    if d == 0:
        return ["c"]
    if d == 1:
        return ["n", "t"]
    return ["n"]


def _extrapolate_exact(values: np.ndarray, d: int, horizon: int) -> np.ndarray:
    """Extend a series whose d-th difference is constant, without error."""
    tails = [float(np.diff(values, n=k)[-1]) for k in range(d + 1)]
    out = []
    for _ in range(horizon):
        for k in range(d - 1, -1, -1):
            tails[k] += tails[k + 1]
        out.append(tails[0])
    return np.asarray(out, dtype=float)


class AutoARIMAForecaster:
    """Per-series ARIMA order selection and fitting.

    Args:
        config: Merged configuration dictionary with a 'model' key holding
            kpss_alpha, max_d, max_p, max_q, max_order and maxiter.
    """

    def __init__(self, config: dict) -> None:
        self.model_cfg = config["model"]
        self.kpss_alpha: float = self.model_cfg.get("kpss_alpha", 0.05)
        self.max_d: int = self.model_cfg.get("max_d", 2)
        self.max_p: int = self.model_cfg.get("max_p", 5)
        self.max_q: int = self.model_cfg.get("max_q", 5)
        self.max_order: int = self.model_cfg.get("max_order", 5)
        self.maxiter: int = self.model_cfg.get("maxiter", 200)

    def candidate_orders(self, n_obs: int, d: int) -> list[tuple[int, int, str]]:
        """Enumerate (p, q, trend) candidates allowed for a series length.

        The number of estimated ARMA and trend coefficients is capped at
        a third of the differenced sample so short series are not overfit.
        """
        max_params = max(1, (n_obs - d) // 3)
        candidates = []
        for trend in _trend_options(d):
            n_trend = 0 if trend == "n" else 1
            for p in range(self.max_p + 1):
                for q in range(self.max_q + 1):
                    if p + q > self.max_order:
                        continue
                    if p + q + n_trend > max_params:
                        continue
                    candidates.append((p, q, trend))
        return candidates

    def _fit_candidate(
        self,
        values: np.ndarray,
        order: tuple[int, int, int],
        trend: str,
    ) -> Any | None:
        """Fit one candidate by MLE; None if the optimizer fails."""
        # Short annual series routinely trigger convergence and
        # non-invertibility warnings; the converged flag is checked below.
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            try:
                model = ARIMA(values, order=order, trend=trend)
                result = model.fit(method_kwargs={"maxiter": self.maxiter})
            except (ValueError, np.linalg.LinAlgError) as exc:
                logger.debug(f"    ARIMA{order} trend={trend} failed: {exc}")
                return None

        retvals = getattr(result, "mle_retvals", None) or {}
        if retvals.get("converged", True) is False:
            return None
        if not np.isfinite(result.aic):
            return None
        return result

    def fit(self, values: np.ndarray, iso_code: str = "") -> FittedModel:
        """Select and fit the ARIMA model for one training series.

        Args:
            values: 1-D training coverage values, oldest first.
            iso_code: Country identifier, carried into the FittedModel.

        Returns:
            FittedModel for the selected order.

        Raises:
            ModelNonConvergenceError: If even the naive fallback model
                cannot be fit.
        """
        values = np.asarray(values, dtype=float).ravel()
        if len(values) < 3:
            raise ValueError(f"{iso_code}: need at least 3 observations, got {len(values)}")

        if is_constant(values):
            return FittedModel(
                iso_code=iso_code,
                order=(0, 0, 0),
                method="Constant",
                trend="c",
                train_values=values,
            )

        d = select_differencing(values, alpha=self.kpss_alpha, max_d=self.max_d)

        if is_constant(np.diff(values, n=d)):
            return FittedModel(
                iso_code=iso_code,
                order=(0, d, 0),
                method="Deterministic trend",
                trend="t",
                train_values=values,
            )

        candidates = self.candidate_orders(len(values), d)
        scored: list[tuple[tuple[float, int, bool], tuple[int, int, int], str, Any]] = []
        for p, q, trend in candidates:
            order = (p, d, q)
            result = self._fit_candidate(values, order, trend)
            if result is None:
                continue
            key = (float(result.aic), p + q, trend != "n")
            scored.append((key, order, trend, result))

        n_failed = len(candidates) - len(scored)
        if scored:
            scored.sort(key=lambda item: item[0])
            key, order, trend, result = scored[0]
            return FittedModel(
                iso_code=iso_code,
                order=order,
                method=method_label(order, trend),
                trend=trend,
                train_values=values,
                result=result,
                aic=key[0],
                n_candidates=len(candidates),
                n_failed=n_failed,
            )

        return self._fit_fallback(values, d, iso_code, len(candidates))

    def _fit_fallback(
        self,
        values: np.ndarray,
        d: int,
        iso_code: str,
        n_candidates: int,
    ) -> FittedModel:
        """Naive ARIMA(0, d, 0) used when every candidate failed.

        For d = 1 the random walk with drift is tried first, then the plain
        random walk.
        """
        order = (0, d, 0)
        trends = {0: ["c"], 1: ["t", "n"]}.get(d, ["n"])
        logger.warning(
            f"  {iso_code}: none of {n_candidates} ARIMA candidates converged; "
            f"falling back to {method_label(order, trends[0])}"
        )
        result = None
        errors = []
        for trend in trends:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                try:
                    result = ARIMA(values, order=order, trend=trend).fit()
                except (ValueError, np.linalg.LinAlgError) as exc:
                    errors.append(f"trend={trend}: {exc}")
                    continue
            if np.isfinite(result.aic):
                break
            errors.append(f"trend={trend}: non-finite AIC")
            result = None

        if result is None:
            raise ModelNonConvergenceError(
                f"{iso_code}: fallback ARIMA{order} could not be fit ({'; '.join(errors)})"
            )

        return FittedModel(
            iso_code=iso_code,
            order=order,
            method=f"{method_label(order, trend)} (fallback)",
            trend=trend,
            train_values=values,
            result=result,
            aic=float(result.aic),
            fallback=True,
            n_candidates=n_candidates,
            n_failed=n_candidates,
        )


def forecast(
    model: FittedModel,
    horizon: int,
    confidence_level: float,
) -> pd.DataFrame:
    """Point forecasts and normal prediction intervals for a fitted model.

    Args:
        model: Output of ``AutoARIMAForecaster.fit``.
        horizon: Number of years ahead (1 or 2).
        confidence_level: Interval coverage, e.g. 0.95.

    Returns:
        DataFrame with columns step (1-based), mean, se, lower_ci,
        upper_ci; one row per step.

    Raises:
        ValueError: If horizon or confidence_level is out of range.
        ModelNonConvergenceError: If the model yields non-finite output.
    """
    if not 1 <= horizon <= MAX_HORIZON:
        raise ValueError(f"horizon must be between 1 and {MAX_HORIZON}, got {horizon}")
    if not 0 < confidence_level < 1:
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")

    if model.result is None:
        d = model.order[1]
        if model.method == "Constant":
            mean = np.full(horizon, float(model.train_values[-1]))
        else:
            mean = _extrapolate_exact(model.train_values, d, horizon)
        se = np.zeros(horizon)
    else:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            fc = model.result.get_forecast(steps=horizon)
            mean = np.asarray(fc.predicted_mean, dtype=float)
            se = np.asarray(fc.se_mean, dtype=float)

    if not (np.all(np.isfinite(mean)) and np.all(np.isfinite(se))):
        raise ModelNonConvergenceError(
            f"{model.iso_code}: {model.method} produced a non-finite forecast"
        )

    z = float(norm.ppf(0.5 + confidence_level / 2.0))
    # Enforce non-decreasing uncertainty across steps.
    se = np.maximum.accumulate(se)
    return pd.DataFrame({
        "step": np.arange(1, horizon + 1),
        "mean": mean,
        "se": se,
        "lower_ci": mean - z * se,
        "upper_ci": mean + z * se,
    })
