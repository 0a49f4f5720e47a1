"""
Empirical Bayes variance moderation (limma-style).

Shrinks per-feature residual variances toward a common prior estimated from
all features, giving moderated t-statistics that are more stable than plain
t-tests when groups are small.

References:
    Smyth (2004) "Linear models and empirical Bayes methods for assessing
    differential expression in microarray experiments"
"""

from typing import Tuple, Union

import numpy as np
from scipy.special import digamma, polygamma


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Compute the inverse of the trigamma function using Newton's method.

    Solves for y where trigamma(y) = x, starting from y = 0.5 + 1/x.

    Parameters:
    -----------
    x : float
        Target trigamma value (must be positive)
    tol : float
        Relative convergence tolerance
    max_iter : int
        Maximum Newton iterations

    Returns:
    --------
    float
        y such that trigamma(y) ≈ x (np.inf when x <= 0)
    """
    if x <= 0:
        return np.inf

    # Asymptotic regimes: trigamma(y) ~ 1/y^2 near 0 and ~ 1/y for large y
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x

    for _ in range(max_iter):
        tri = polygamma(1, y)
        tri_deriv = polygamma(2, y)

        if abs(tri_deriv) < 1e-15:
            break
        delta = (tri - x) / tri_deriv
        y_new = y - delta

        if y_new <= 0:
            y = y / 2.0
        else:
            y = y_new

        if abs(delta) < tol * abs(y):
            break

    return max(float(y), 1e-10)


def fit_f_dist(sigma2: np.ndarray, df: Union[float, np.ndarray]) -> Tuple[float, float]:
    """
    Estimate prior degrees of freedom d0 and prior variance s0² by moments.

    Assumes s²_i ~ s0² · F(df_i, d0); matches the mean and variance of
    log(s²_i) to their theoretical values.

    Parameters:
    -----------
    sigma2 : np.ndarray
        Per-feature residual variances
    df : float or np.ndarray
        Residual degrees of freedom (scalar or one per feature)

    Returns:
    --------
    tuple (d0, s0_sq)
        d0 may be np.inf, meaning the variances are as homogeneous as the
        F-distribution allows and every feature is shrunk fully to s0_sq.
    """
    sigma2 = np.asarray(sigma2, dtype=float)
    valid_mask = (sigma2 > 0) & np.isfinite(sigma2)
    if not np.isscalar(df):
        df = np.asarray(df, dtype=float)
        valid_mask &= np.isfinite(df) & (df > 0)

    sigma2_valid = sigma2[valid_mask]
    if len(sigma2_valid) < 3:
        return np.inf, float(np.median(sigma2_valid)) if len(sigma2_valid) > 0 else 1.0

    df_valid = df if np.isscalar(df) else df[valid_mask]
    df_half = np.asarray(df_valid, dtype=float) / 2.0

    e = np.log(sigma2_valid) - digamma(df_half) + np.log(df_half)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1))

    evar_adjusted = evar - float(np.mean(polygamma(1, df_half)))

    if evar_adjusted <= 0:
        return np.inf, float(np.exp(emean))

    d0 = 2.0 * trigamma_inverse(evar_adjusted)
    if d0 > 1e10:
        return np.inf, float(np.exp(emean))

    s0_sq = np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0))
    return float(d0), float(s0_sq)


def squeeze_var(
    sigma2: np.ndarray,
    df: Union[float, np.ndarray],
    d0: float,
    s0_sq: float,
) -> Tuple[np.ndarray, Union[float, np.ndarray]]:
    """
    Posterior variances s²_post = (d0·s0² + df·s²) / (d0 + df).

    With d0 = inf every posterior equals s0² and the total df is infinite.

    Returns:
    --------
    tuple (s2_post, df_total)
    """
    sigma2 = np.asarray(sigma2, dtype=float)
    df_is_array = not np.isscalar(df)
    df_arr = np.asarray(df, dtype=float)

    if np.isinf(d0):
        s2_post = np.full_like(sigma2, s0_sq)
        df_total = np.full_like(df_arr, np.inf) if df_is_array else np.inf
        return s2_post, df_total

    s2_post = (d0 * s0_sq + df_arr * sigma2) / (d0 + df_arr)
    df_total = d0 + df_arr
    if df_is_array:
        return s2_post, df_total
    return s2_post, float(df_total)
