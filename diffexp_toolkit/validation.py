"""
Design Validation Module for Differential Expression Toolkit

Functions for validating that the intensity matrix, the group assignment and
the requested contrasts agree with each other, plus the exception types and
per-feature failure reasons used throughout the toolkit.
"""

from enum import Enum
from typing import Dict, List, Optional

import pandas as pd


class SampleMatchingError(Exception):
    """Custom exception for sample matching issues."""
    def __init__(self, message):
        super().__init__(message)


class ConfigInconsistentError(ValueError):
    """Raised when a contrast or group configuration does not match the data."""
    def __init__(self, message):
        super().__init__(message)


class FailureReason(str, Enum):
    """Why a single feature could not be tested."""

    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    UNDEFINED_STATISTIC = "UNDEFINED_STATISTIC"

    def __str__(self):
        return self.value


def validate_design_consistency(
    matrix,
    assignment,
    contrasts: Optional[List] = None,
    min_group_size: int = 2,
    raise_on_error: bool = False,
    verbose: bool = True,
) -> Dict:
    """
    Validate consistency between the intensity matrix, group labels and contrasts.

    Parameters:
    -----------
    matrix : IntensityMatrix
        Features x samples intensity matrix
    assignment : GroupAssignment
        Sample to group label mapping
    contrasts : list of Contrast, optional
        Contrasts that will be tested
    min_group_size : int, default 2
        Smallest group size that still allows a within-group variance
    raise_on_error : bool, default False
        Raise SampleMatchingError / ConfigInconsistentError on the first
        category of error instead of only reporting it
    verbose : bool, default True
        Whether to print detailed validation results

    Returns:
    --------
    Dict containing validation results and diagnostic information
    """

    results = {
        'is_valid': True,
        'errors': [],
        'warnings': [],
        'diagnostics': {}
    }

    if verbose:
        print("DESIGN CONSISTENCY VALIDATION")
        print("=" * 50)

    # 1. Every matrix sample needs a group label
    matrix_samples = list(matrix.sample_ids)
    matrix_sample_set = set(matrix_samples)
    unassigned = [s for s in matrix_samples if s not in assignment]
    extra = [s for s in assignment.sample_ids if s not in matrix_sample_set]

    results['diagnostics']['n_samples'] = len(matrix_samples)
    results['diagnostics']['n_features'] = len(matrix.feature_ids)
    results['diagnostics']['unassigned_samples'] = unassigned
    results['diagnostics']['extra_assigned_samples'] = extra

    if unassigned:
        results['is_valid'] = False
        results['errors'].append(
            f"{len(unassigned)} samples have no group assignment: {unassigned[:5]}"
            f"{'...' if len(unassigned) > 5 else ''}"
        )
        if raise_on_error:
            raise SampleMatchingError(results['errors'][-1])

    if extra:
        results['warnings'].append(
            f"{len(extra)} assigned samples are not in the intensity matrix and will be ignored"
        )

    # 2. Group sizes
    sizes = {
        group: sum(1 for s in assignment.samples_in(group) if s in matrix_sample_set)
        for group in assignment.groups
    }
    results['diagnostics']['group_sizes'] = sizes

    if len(sizes) < 2:
        results['is_valid'] = False
        results['errors'].append(f"At least 2 groups are required, found {len(sizes)}")

    small_groups = {g: n for g, n in sizes.items() if n < min_group_size}
    if small_groups:
        # Not fatal: the affected features are reported as INSUFFICIENT_DATA
        results['warnings'].append(
            f"Groups below {min_group_size} samples (tests will report "
            f"{FailureReason.INSUFFICIENT_DATA}): {small_groups}"
        )

    # 3. Contrasts must only reference known labels
    if contrasts:
        for contrast in contrasts:
            unknown = [g for g in contrast.groups if g not in sizes]
            if unknown:
                results['is_valid'] = False
                results['errors'].append(
                    f"Contrast '{contrast.name}' references unknown group labels: {unknown}"
                )
                if raise_on_error:
                    raise ConfigInconsistentError(results['errors'][-1])

    # 4. Missing values
    n_missing = int(matrix.data.isna().sum().sum())
    results['diagnostics']['n_missing_values'] = n_missing
    if n_missing:
        results['warnings'].append(
            f"Intensity matrix contains {n_missing} missing values; "
            "affected features are tested on their observed samples only"
        )

    if verbose:
        print(f"Samples: {len(matrix_samples)}  Features: {len(matrix.feature_ids)}")
        print(f"Group sizes: {sizes}")
        if results['errors']:
            print("\nERRORS:")
            for error in results['errors']:
                print(f"  ✗ {error}")
        if results['warnings']:
            print("\nWARNINGS:")
            for warning in results['warnings']:
                print(f"  ⚠ {warning}")
        if results['is_valid']:
            print("\n✓ Design is consistent")

    return results


def generate_design_diagnostic_report(validation_results: Dict) -> str:
    """
    Build a plain-text report from validate_design_consistency() output.

    Parameters:
    -----------
    validation_results : Dict
        Results dictionary returned by validate_design_consistency

    Returns:
    --------
    str
        Multi-line report
    """
    lines = ["DESIGN DIAGNOSTIC REPORT", "=" * 50]
    lines.append(f"Status: {'VALID' if validation_results['is_valid'] else 'INVALID'}")

    diagnostics = validation_results.get('diagnostics', {})
    if 'n_features' in diagnostics:
        lines.append(f"Features: {diagnostics['n_features']}")
    if 'n_samples' in diagnostics:
        lines.append(f"Samples: {diagnostics['n_samples']}")

    group_sizes = diagnostics.get('group_sizes')
    if group_sizes:
        size_table = pd.Series(group_sizes, name="n_samples")
        size_table.index.name = "group"
        lines.append("")
        lines.append(size_table.to_string())

    for title, key in (("Errors", 'errors'), ("Warnings", 'warnings')):
        entries = validation_results.get(key, [])
        if entries:
            lines.append("")
            lines.append(f"{title}:")
            lines.extend(f"  - {entry}" for entry in entries)

    return "\n".join(lines)
