"""
Post-hoc Resolution Module

Tukey's honestly-significant-difference procedure for features that the
omnibus ANOVA flagged, so that each hit can be traced to the specific
group pairs that differ. Family-wise error is controlled within a feature
(over its group pairs), not across features.
"""

from dataclasses import dataclass
from itertools import combinations
from typing import Dict, Iterable, Tuple

import numpy as np
import pandas as pd
from statsmodels.stats.multicomp import pairwise_tukeyhsd


@dataclass(frozen=True)
class PairwiseComparison:
    """One group pair of a Tukey HSD run; mean_difference is mean(a) - mean(b)."""

    group_a: str
    group_b: str
    mean_difference: float
    lower: float
    upper: float
    adj_p_value: float
    reject: bool

    @property
    def name(self):
        return f"{self.group_a}_vs_{self.group_b}"


@dataclass(frozen=True)
class PostHocResult:
    """Tukey comparisons for one feature; intervals are in units of `basis`."""

    feature_id: str
    alpha: float
    comparisons: Tuple[PairwiseComparison, ...]
    basis: str = "log2"

    @property
    def significant_pairs(self):
        return [c for c in self.comparisons if c.reject]

    def comparison(self, group_a, group_b):
        for c in self.comparisons:
            if (c.group_a, c.group_b) == (group_a, group_b):
                return c
            if (c.group_a, c.group_b) == (group_b, group_a):
                return PairwiseComparison(
                    group_a=group_a,
                    group_b=group_b,
                    mean_difference=-c.mean_difference,
                    lower=-c.upper,
                    upper=-c.lower,
                    adj_p_value=c.adj_p_value,
                    reject=c.reject,
                )
        raise KeyError(f"No comparison between '{group_a}' and '{group_b}'")


def _tukey_single(feature_id, values, labels, groups, alpha, basis="log2"):
    finite = np.isfinite(values)
    endog = values[finite]
    group_labels = np.asarray(labels, dtype=str)[finite]

    tukey = pairwise_tukeyhsd(endog=endog, groups=group_labels, alpha=alpha)

    # statsmodels orders pairs as combinations of the sorted unique labels
    # and reports meandiff as mean(second) - mean(first)
    by_pair = {}
    for k, (first, second) in enumerate(combinations(tukey.groupsunique, 2)):
        by_pair[(str(first), str(second))] = (
            float(tukey.meandiffs[k]),
            float(tukey.confint[k][0]),
            float(tukey.confint[k][1]),
            float(tukey.pvalues[k]),
            bool(tukey.reject[k]),
        )

    observed = [g for g in groups if g in set(group_labels)]
    comparisons = []
    for i, j in combinations(range(len(observed)), 2):
        group_b, group_a = observed[i], observed[j]
        if (group_b, group_a) in by_pair:
            diff, lower, upper, p_adj, reject = by_pair[(group_b, group_a)]
        else:
            diff, lower, upper, p_adj, reject = by_pair[(group_a, group_b)]
            diff, lower, upper = -diff, -upper, -lower
        comparisons.append(PairwiseComparison(
            group_a=group_a,
            group_b=group_b,
            mean_difference=diff,
            lower=lower,
            upper=upper,
            adj_p_value=p_adj,
            reject=reject,
        ))

    return PostHocResult(
        feature_id=feature_id, alpha=alpha, comparisons=tuple(comparisons), basis=basis
    )


def run_tukey_posthoc(matrix, assignment, feature_ids, alpha=0.05, basis="log2", verbose=True):
    """
    Run Tukey HSD over all group pairs for each listed feature.

    Parameters:
    -----------
    matrix : IntensityMatrix
        Matrix the omnibus test was run on
    assignment : GroupAssignment
        Sample to group mapping
    feature_ids : list of str
        Features to resolve (normally the omnibus hits)
    alpha : float
        Family-wise error rate per feature
    basis : str
        Scale of the matrix values ("log2" or "scaled"), recorded on each result

    Returns:
    --------
    dict
        feature_id -> PostHocResult, in the order of ``feature_ids``
    """
    feature_ids = list(feature_ids)
    known = set(matrix.feature_ids)
    missing = [f for f in feature_ids if f not in known]
    if missing:
        raise ValueError(f"Features not present in the matrix: {missing[:5]}")

    if verbose and feature_ids:
        print(f"Running Tukey HSD post-hoc on {len(feature_ids)} features (alpha={alpha})...")

    labels = assignment.labels_for(matrix.sample_ids)
    data = matrix.data
    results = {}
    for feature_id in feature_ids:
        values = data.loc[feature_id].to_numpy(dtype=float)
        results[feature_id] = _tukey_single(
            feature_id, values, labels, assignment.groups, alpha, basis
        )

    if verbose and feature_ids:
        n_pairs = sum(len(r.significant_pairs) for r in results.values())
        print(f"✓ Post-hoc complete: {n_pairs} significant group pairs")

    return results


def resolve_omnibus_hits(result, matrix, assignment, alpha=None, basis="log2", verbose=True):
    """
    Run Tukey HSD on the differentially expressed features of an omnibus result.

    Raises ValueError for results produced by a pairwise pipeline.
    """
    if result.pipeline != "omnibus":
        raise ValueError(
            f"Post-hoc resolution applies to omnibus results only, got '{result.pipeline}'"
        )
    alpha = result.p_value_threshold if alpha is None else alpha
    return run_tukey_posthoc(matrix, assignment, result.significant_ids, alpha=alpha,
                             basis=basis, verbose=verbose)


def posthoc_to_dataframe(posthoc_results: Iterable[PostHocResult]) -> pd.DataFrame:
    """Long table with one row per feature and group pair."""
    rows = []
    for res in posthoc_results:
        for c in res.comparisons:
            rows.append({
                "Protein": res.feature_id,
                "Comparison": c.name,
                "group_a": c.group_a,
                "group_b": c.group_b,
                "meandiff": c.mean_difference,
                "lower": c.lower,
                "upper": c.upper,
                "p.adj": c.adj_p_value,
                "reject": c.reject,
                "basis": res.basis,
            })
    columns = ["Protein", "Comparison", "group_a", "group_b", "meandiff",
               "lower", "upper", "p.adj", "reject", "basis"]
    return pd.DataFrame(rows, columns=columns)


def summarize_posthoc(posthoc_results: Dict[str, PostHocResult]) -> pd.DataFrame:
    """Count of features in which each group pair differs significantly."""
    table = posthoc_to_dataframe(posthoc_results.values())
    if table.empty:
        return pd.DataFrame(columns=["Comparison", "n_significant"])
    counts = table[table["reject"]].groupby("Comparison").size()
    counts = counts.reindex(table["Comparison"].unique(), fill_value=0)
    return counts.rename("n_significant").reset_index()
