"""
Data Normalization Module for Differential Expression Toolkit

Pre-processing helpers applied before testing: log transformation and
center/scale normalization. The engine itself expects a complete matrix,
so check_no_missing is provided for callers that want to enforce it.
"""

import pandas as pd
import numpy as np
from typing import Optional


def log_transform(
    data: pd.DataFrame,
    base: str = "log2",
    pseudocount: Optional[float] = None,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Apply log transformation to data.

    Parameters:
    -----------
    data : pd.DataFrame
        Data to transform
    base : str
        Log base ('log2', 'log10', or 'ln')
    pseudocount : float, optional
        Small value to add before log transform (auto-calculated if None)

    Returns:
    --------
    pd.DataFrame : Log-transformed data
    """

    # Calculate pseudocount if not provided
    if pseudocount is None:
        min_positive = data[data > 0].min().min()
        pseudocount = min_positive / 10 if min_positive > 0 else 1e-6

    data_with_pseudo = data + pseudocount

    if base == "log2":
        transformed_data = np.log2(data_with_pseudo)
    elif base == "log10":
        transformed_data = np.log10(data_with_pseudo)
    elif base == "ln":
        transformed_data = np.log(data_with_pseudo)
    else:
        raise ValueError("base must be 'log2', 'log10', or 'ln'")

    if verbose:
        print(f"Applied {base} transformation with pseudocount {pseudocount}")

    return pd.DataFrame(transformed_data, index=data.index, columns=data.columns)


def center_scale_normalize(
    data: pd.DataFrame, axis: str = "samples", verbose: bool = True
) -> pd.DataFrame:
    """
    Center each sample (or feature) to mean 0 and scale to unit variance.

    Formula: (x - mean) / std, with a constant row/column only centered.

    Parameters:
    -----------
    data : pd.DataFrame
        Features x samples data (usually log-transformed)
    axis : str
        'samples' standardizes each column, 'features' each row

    Returns:
    --------
    pd.DataFrame : Centered and scaled data
    """
    if axis == "samples":
        means = data.mean(axis=0)
        stds = data.std(axis=0).replace(0, 1.0)
        normalized = (data - means) / stds
    elif axis == "features":
        means = data.mean(axis=1)
        stds = data.std(axis=1).replace(0, 1.0)
        normalized = data.sub(means, axis=0).div(stds, axis=0)
    else:
        raise ValueError("axis must be 'samples' or 'features'")

    if verbose:
        print(f"Center/scale normalization completed across {axis} "
              f"({data.shape[0]} features x {data.shape[1]} samples)")

    return normalized


def check_no_missing(data: pd.DataFrame) -> pd.DataFrame:
    """
    Raise ValueError if the matrix has missing or non-finite entries.

    Returns the input unchanged so it can be used inline.
    """
    values = data.to_numpy(dtype=float)
    bad = ~np.isfinite(values)
    if bad.any():
        bad_features = data.index[bad.any(axis=1)].tolist()
        raise ValueError(
            f"Matrix contains {int(bad.sum())} missing or non-finite values in "
            f"{len(bad_features)} features: {bad_features[:5]}"
            f"{'...' if len(bad_features) > 5 else ''}"
        )
    return data
