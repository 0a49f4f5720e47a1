"""
Data Import Module for Differential Expression Toolkit

Functions for loading the features x samples intensity table and the
sample -> group configuration.
"""

import os
from typing import Optional

import pandas as pd

from .experimental_design import GroupAssignment, IntensityMatrix


def _detect_separator(path: str) -> str:
    extension = os.path.splitext(path)[1].lower()
    return "\t" if extension in (".tsv", ".txt", ".tab") else ","


def load_intensity_table(path: str, sep: Optional[str] = None,
                         verbose: bool = True) -> IntensityMatrix:
    """
    Load a delimited intensity table.

    The header row holds sample identifiers; the first column holds feature
    identifiers.

    Parameters:
    -----------
    path : str
        Path to the table
    sep : str, optional
        Field separator (tab for .tsv/.txt/.tab files, comma otherwise)

    Returns:
    --------
    IntensityMatrix
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Intensity file not found: {path}")

    sep = sep or _detect_separator(path)
    try:
        data = pd.read_csv(path, sep=sep, index_col=0)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ValueError(f"Error loading intensity file: {e}") from e

    matrix = IntensityMatrix(data)
    if verbose:
        n_features, n_samples = matrix.shape
        print(f"✓ Loaded intensity data: {n_features} features x {n_samples} samples")
        if matrix.has_missing():
            print("  Warning: table contains missing values")
    return matrix


def load_group_config(path: str, sample_column: Optional[str] = None,
                      group_column: Optional[str] = None, group_order=None,
                      verbose: bool = True) -> GroupAssignment:
    """
    Load a sample -> group mapping from a two-column delimited file.

    Column names default to the first two columns of the file.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Group configuration file not found: {path}")

    try:
        metadata = pd.read_csv(path, sep=_detect_separator(path), dtype=str)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ValueError(f"Error loading group configuration: {e}") from e

    if metadata.shape[1] < 2:
        raise ValueError("Group configuration needs a sample column and a group column")

    sample_column = sample_column or metadata.columns[0]
    group_column = group_column or metadata.columns[1]
    assignment = GroupAssignment.from_metadata(
        metadata, sample_column, group_column, group_order=group_order
    )

    if verbose:
        print(f"✓ Loaded group configuration: {len(assignment)} samples in "
              f"{len(assignment.groups)} groups")
        for group, n in assignment.group_sizes().items():
            print(f"  {group}: {n} samples")
    return assignment
