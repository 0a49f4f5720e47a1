"""
Statistical Analysis Module for Differential Expression

This module provides a configuration-driven differential expression engine:
per-feature hypothesis tests (one-way ANOVA, Student/Welch t-test, or
empirical-Bayes moderated t-test), per-contrast multiple testing correction,
a two-criterion decision rule (adjusted p-value and fold change), and Tukey
post-hoc resolution of omnibus hits.
"""

import warnings
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats as scipy_stats
from scipy.stats import ttest_ind
from statsmodels.formula.api import ols
from statsmodels.stats.anova import anova_lm
from statsmodels.stats.multitest import multipletests

from .empirical_bayes import fit_f_dist, squeeze_var
from .experimental_design import (
    OMNIBUS,
    GroupAssignment,
    IntensityMatrix,
    all_pairwise_contrasts,
    parse_contrasts,
)
from .normalization import center_scale_normalize, log_transform
from .posthoc import PostHocResult, posthoc_to_dataframe, run_tukey_posthoc
from .validation import ConfigInconsistentError, FailureReason


class StatisticalConfig:
    """Configuration class for differential expression parameters

    Supported test methods:
    - 'anova': one-way ANOVA across all groups, then Tukey post-hoc on hits
    - 'student_t': equal-variance two-sample t-test per contrast
    - 'welch_t': unequal-variance two-sample t-test per contrast
    - 'moderated_t': linear model + empirical-Bayes moderated t per contrast
    """

    SUPPORTED_METHODS = ("anova", "student_t", "welch_t", "moderated_t")
    SUPPORTED_CORRECTIONS = ("fdr_bh", "fdr_by", "bonferroni", "holm", "none")

    def __init__(self):
        # Basic analysis parameters
        self.statistical_test_method = "anova"
        self.p_value_threshold = 0.05
        self.fold_change_threshold = 0.5  # log2 units

        # Multiple testing correction (applied per contrast)
        self.correction_method = "fdr_bh"

        # Which matrix fold changes are computed from: 'log2' or 'scaled'
        self.fold_change_basis = "log2"

        # Group comparison parameters
        self.group_order = None
        self.contrasts = []  # empty -> all pairwise contrasts
        self.min_samples_per_group = 2

        # Post-hoc (omnibus pipeline only)
        self.run_posthoc = True
        self.posthoc_alpha = None  # None -> p_value_threshold

        # Pre-processing applied by run_comprehensive_statistical_analysis
        self.log_transform_before_stats = "auto"  # "auto", True, False
        self.log_base = "log2"
        self.log_pseudocount = None
        self.scale_before_stats = False
        self.scale_axis = "samples"

        # Parallel per-feature map (joblib)
        self.n_jobs = 1

    def validate(self):
        """Validate parameter values"""
        if self.statistical_test_method not in self.SUPPORTED_METHODS:
            raise ValueError(
                f"Unknown statistical method: {self.statistical_test_method}. "
                f"Supported methods: {', '.join(self.SUPPORTED_METHODS)}"
            )
        if not 0 < self.p_value_threshold <= 1:
            raise ValueError("p_value_threshold must be in (0, 1]")
        if self.fold_change_threshold < 0:
            raise ValueError("fold_change_threshold must be non-negative")
        if self.correction_method not in self.SUPPORTED_CORRECTIONS:
            raise ValueError(
                f"Unknown correction method: {self.correction_method}. "
                f"Supported: {', '.join(self.SUPPORTED_CORRECTIONS)}"
            )
        if self.fold_change_basis not in ("log2", "scaled"):
            raise ValueError("fold_change_basis must be 'log2' or 'scaled'")
        if self.min_samples_per_group < 2:
            raise ValueError("min_samples_per_group must be at least 2")
        if self.posthoc_alpha is not None and not 0 < self.posthoc_alpha < 1:
            raise ValueError("posthoc_alpha must be in (0, 1)")
        if self.scale_axis not in ("samples", "features"):
            raise ValueError("scale_axis must be 'samples' or 'features'")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")
        return True

    @property
    def effective_posthoc_alpha(self):
        return self.posthoc_alpha if self.posthoc_alpha is not None else self.p_value_threshold

    def to_dict(self):
        return dict(vars(self))

    @classmethod
    def from_dict(cls, values):
        config = cls()
        unknown = [k for k in values if not hasattr(config, k)]
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        for key, value in values.items():
            setattr(config, key, value)
        return config


# =============================================================================
# Result types
# =============================================================================


class DecisionLabel(str, Enum):
    DIFFERENTIALLY_EXPRESSED = "differentially_expressed"
    NOT_SIGNIFICANT = "not_significant"
    UNTESTABLE = "untestable"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class FeatureTestResult:
    """Raw outcome of one test for one feature under one contrast."""

    feature_id: str
    contrast: str
    test_method: str
    p_value: float = np.nan
    statistic: float = np.nan
    effect_size: float = np.nan
    df: float = np.nan
    group_means: Dict[str, float] = field(default_factory=dict)
    group_sizes: Dict[str, int] = field(default_factory=dict)
    failure: Optional[FailureReason] = None
    failure_detail: str = ""

    @property
    def is_failed(self):
        return self.failure is not None


@dataclass(frozen=True)
class CorrectedResult:
    """A FeatureTestResult with its multiple-testing adjusted p-value."""

    result: FeatureTestResult
    adj_p_value: float = np.nan

    @property
    def feature_id(self):
        return self.result.feature_id

    @property
    def p_value(self):
        return self.result.p_value

    @property
    def effect_size(self):
        return self.result.effect_size

    @property
    def is_failed(self):
        return self.result.is_failed


@dataclass(frozen=True)
class DifferentialResult:
    """Corrected and classified results of one pipeline run for one contrast."""

    pipeline: str
    contrast: str
    test_method: str
    results: Tuple[CorrectedResult, ...]
    decisions: Dict[str, DecisionLabel]
    groups: Tuple[str, ...]
    p_value_threshold: float
    fold_change_threshold: float
    fold_change_basis: str
    correction_method: str

    @property
    def n_features(self):
        return len(self.results)

    @property
    def n_failed(self):
        return sum(1 for r in self.results if r.is_failed)

    @property
    def n_tested(self):
        return self.n_features - self.n_failed

    @property
    def significant_ids(self) -> List[str]:
        hits = [
            r for r in self.results
            if self.decisions[r.feature_id] is DecisionLabel.DIFFERENTIALLY_EXPRESSED
        ]
        hits.sort(key=lambda r: (r.adj_p_value, -abs(r.effect_size)))
        return [r.feature_id for r in hits]

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for corrected in self.results:
            res = corrected.result
            row = {
                "Protein": res.feature_id,
                "Contrast": self.contrast,
                "Pipeline": self.pipeline,
            }
            for group in self.groups:
                if group in res.group_means:
                    row[f"mean_{group}"] = res.group_means[group]
            row.update({
                "logFC": res.effect_size,
                "statistic": res.statistic,
                "df": res.df,
                "P.Value": res.p_value,
                "adj.P.Val": corrected.adj_p_value,
                "Decision": self.decisions[res.feature_id].value,
                "Failure": res.failure.value if res.failure else None,
                "Failure_Detail": res.failure_detail or None,
                "test_method": res.test_method,
            })
            rows.append(row)

        df = pd.DataFrame(rows)
        if df.empty:
            return df
        # Keep group-mean columns together in group order
        leading = ["Protein", "Contrast", "Pipeline"]
        mean_cols = [f"mean_{g}" for g in self.groups if f"mean_{g}" in df.columns]
        trailing = [c for c in df.columns if c not in leading and c not in mean_cols]
        return df[leading + mean_cols + trailing]

    def significant(self) -> pd.DataFrame:
        df = self.to_dataframe()
        df = df[df["Decision"] == DecisionLabel.DIFFERENTIALLY_EXPRESSED.value]
        return df.sort_values("adj.P.Val").reset_index(drop=True)

    def failed(self) -> pd.DataFrame:
        df = self.to_dataframe()
        cols = ["Protein", "Contrast", "Pipeline", "Failure", "Failure_Detail", "test_method"]
        return df.loc[df["Failure"].notna(), cols].reset_index(drop=True)


@dataclass(frozen=True)
class OmnibusResult(DifferentialResult):
    """Omnibus (one-way ANOVA) result plus Tukey post-hoc for its hits."""

    posthoc: Dict[str, PostHocResult] = field(default_factory=dict)

    def posthoc_table(self) -> pd.DataFrame:
        return posthoc_to_dataframe(self.posthoc.values())


@dataclass(frozen=True)
class ContrastResults:
    """Per-contrast results of a pairwise pipeline, keyed by contrast name."""

    test_method: str
    results: Dict[str, DifferentialResult]
    pipeline: str = "pairwise"

    @property
    def contrasts(self):
        return list(self.results)

    def __getitem__(self, name):
        return self.results[name]

    def __iter__(self):
        return iter(self.results)

    def __len__(self):
        return len(self.results)

    def items(self):
        return self.results.items()

    def to_dataframe(self) -> pd.DataFrame:
        frames = [r.to_dataframe() for r in self.results.values()]
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)

    def significant(self) -> Dict[str, pd.DataFrame]:
        return {name: r.significant() for name, r in self.results.items()}


# =============================================================================
# Per-feature helpers
# =============================================================================


def _split_by_group(values, labels, groups):
    """Observed (finite) values of one feature, keyed by group."""
    finite = np.isfinite(values)
    return {g: values[(labels == g) & finite] for g in groups}


def _group_summary(split):
    means = {g: float(np.mean(v)) if len(v) else np.nan for g, v in split.items()}
    sizes = {g: int(len(v)) for g, v in split.items()}
    return means, sizes


def _create_failed_result(feature_id, contrast_name, test_method, reason, detail,
                          group_means=None, group_sizes=None):
    """Create result for a feature that could not be tested"""
    return FeatureTestResult(
        feature_id=feature_id,
        contrast=contrast_name,
        test_method=test_method,
        group_means=group_means or {},
        group_sizes=group_sizes or {},
        failure=reason,
        failure_detail=detail,
    )


def _anova_single(feature_id, values, labels, groups, min_group_size):
    test_method = "One-way ANOVA"
    split = _split_by_group(values, labels, groups)
    means, sizes = _group_summary(split)

    def fail(reason, detail):
        return _create_failed_result(feature_id, OMNIBUS, test_method, reason, detail, means, sizes)

    if len(groups) < 2:
        return fail(FailureReason.INSUFFICIENT_DATA, f"Need at least 2 groups, got {len(groups)}")

    small = {g: n for g, n in sizes.items() if n < min_group_size}
    if small:
        return fail(
            FailureReason.INSUFFICIENT_DATA,
            f"Groups below {min_group_size} observations: {small}",
        )

    df_residual = sum(sizes.values()) - len(groups)
    if df_residual < 1:
        return fail(FailureReason.INSUFFICIENT_DATA, "No residual degrees of freedom")

    if all(np.ptp(v) == 0 for v in split.values()):
        return fail(FailureReason.UNDEFINED_STATISTIC, "Zero within-group variance in every group")

    frame = pd.DataFrame({
        "Intensity": np.concatenate([split[g] for g in groups]),
        "Group": np.repeat(np.array(groups, dtype=object), [sizes[g] for g in groups]),
    })

    try:
        model = ols("Intensity ~ C(Group)", data=frame).fit()
        table = anova_lm(model, typ=1)
        f_stat = float(table.loc["C(Group)", "F"])
        p_value = float(table.loc["C(Group)", "PR(>F)"])
    except (ValueError, RuntimeError, ZeroDivisionError, np.linalg.LinAlgError) as e:
        return fail(FailureReason.UNDEFINED_STATISTIC, f"Analysis failed: {e}")

    if not np.isfinite(p_value):
        return fail(FailureReason.UNDEFINED_STATISTIC, "Non-finite p-value")

    return FeatureTestResult(
        feature_id=feature_id,
        contrast=OMNIBUS,
        test_method=test_method,
        p_value=p_value,
        statistic=f_stat,
        effect_size=omnibus_effect_size(means),
        df=float(df_residual),
        group_means=means,
        group_sizes=sizes,
    )


def _ttest_single(feature_id, values, labels, contrast, equal_var, min_group_size):
    test_method = "Student t-test" if equal_var else "Welch t-test"
    group_a, group_b = contrast.group_a, contrast.group_b
    split = _split_by_group(values, labels, [group_a, group_b])
    means, sizes = _group_summary(split)

    def fail(reason, detail):
        return _create_failed_result(
            feature_id, contrast.name, test_method, reason, detail, means, sizes
        )

    if sizes[group_a] < min_group_size or sizes[group_b] < min_group_size:
        return fail(
            FailureReason.INSUFFICIENT_DATA,
            f"Insufficient group data ({group_a}: {sizes[group_a]}, {group_b}: {sizes[group_b]})",
        )

    if np.ptp(split[group_a]) == 0 and np.ptp(split[group_b]) == 0:
        return fail(FailureReason.UNDEFINED_STATISTIC, "Zero variance in both groups")

    try:
        res = ttest_ind(split[group_a], split[group_b], equal_var=equal_var)
        t_stat, p_value = float(res.statistic), float(res.pvalue)
    except (ValueError, RuntimeError, ZeroDivisionError) as e:
        return fail(FailureReason.UNDEFINED_STATISTIC, f"Analysis failed: {e}")

    if not np.isfinite(p_value):
        return fail(FailureReason.UNDEFINED_STATISTIC, "Non-finite p-value")

    if equal_var:
        df = float(sizes[group_a] + sizes[group_b] - 2)
    else:
        df = float(getattr(res, "df", np.nan))

    return FeatureTestResult(
        feature_id=feature_id,
        contrast=contrast.name,
        test_method=test_method,
        p_value=p_value,
        statistic=t_stat,
        effect_size=contrast.estimate(means),
        df=df,
        group_means=means,
        group_sizes=sizes,
    )


def _group_means_fit(feature_id, values, labels, groups):
    """Cell-means linear model for one feature: group means and pooled variance."""
    split = _split_by_group(values, labels, groups)
    means, sizes = _group_summary(split)
    present = [g for g in groups if sizes[g] > 0]
    rss = float(sum(np.sum((split[g] - means[g]) ** 2) for g in present))
    df_residual = sum(sizes[g] for g in present) - len(present)
    zero_variance = all(np.ptp(split[g]) == 0 for g in present) if present else True
    sigma2 = rss / df_residual if df_residual > 0 and not zero_variance else np.nan
    return feature_id, means, sizes, sigma2, float(df_residual)


def _map_features(func, matrix, assignment, n_jobs=1, **kwargs):
    """Apply ``func(feature_id, values, labels, **kwargs)`` to every feature."""
    labels = assignment.labels_for(matrix.sample_ids)
    values = matrix.values
    feature_ids = matrix.feature_ids

    if n_jobs == 1:
        return [func(fid, values[i], labels, **kwargs) for i, fid in enumerate(feature_ids)]

    return Parallel(n_jobs=n_jobs)(
        delayed(func)(fid, values[i], labels, **kwargs) for i, fid in enumerate(feature_ids)
    )


# =============================================================================
# Test strategies
# =============================================================================


class FeatureTest:
    """Strategy computing one raw p-value per feature for a contrast."""

    name = "base"
    pipeline = "pairwise"

    def run(self, matrix, assignment, contrast, config):
        raise NotImplementedError

    def _check_pairwise(self, contrast):
        if contrast == OMNIBUS or not contrast.is_pairwise:
            label = contrast if contrast == OMNIBUS else contrast.name
            raise ValueError(f"{self.name} requires a pairwise contrast, got '{label}'")

    def _check_contrast(self, contrast, assignment):
        # Unknown labels are a configuration error, not missing data
        contrast.validate(assignment)


class OneWayAnovaTest(FeatureTest):
    """F-test of 'all group means equal' from a one-way grouped-means model."""

    name = "anova"
    pipeline = "omnibus"

    def run(self, matrix, assignment, contrast=OMNIBUS, config=None):
        if contrast != OMNIBUS:
            raise ValueError("One-way ANOVA only tests the omnibus hypothesis")
        config = config or StatisticalConfig()
        return _map_features(
            _anova_single,
            matrix,
            assignment,
            n_jobs=config.n_jobs,
            groups=assignment.groups,
            min_group_size=config.min_samples_per_group,
        )


class TwoSampleTTest(FeatureTest):
    """Two-sided two-sample t-test on the samples of the contrast's two groups."""

    def __init__(self, equal_var=True):
        self.equal_var = equal_var
        self.name = "student_t" if equal_var else "welch_t"

    def run(self, matrix, assignment, contrast, config=None):
        self._check_pairwise(contrast)
        self._check_contrast(contrast, assignment)
        config = config or StatisticalConfig()
        return _map_features(
            _ttest_single,
            matrix,
            assignment,
            n_jobs=config.n_jobs,
            contrast=contrast,
            equal_var=self.equal_var,
            min_group_size=config.min_samples_per_group,
        )


class ModeratedTTest(FeatureTest):
    """
    limma-style moderated t-test.

    Every feature is fit with a cell-means model over all groups (pooled
    residual variance). Residual variances are shrunk toward a common prior
    estimated across features, and the contrast is tested with a t-statistic
    on d0 + df_residual degrees of freedom. Unlike the two-sample t-test this
    uses every group's samples to estimate variance.
    """

    name = "moderated_t"
    test_method = "Moderated t-test (eBayes)"

    def run(self, matrix, assignment, contrast, config=None):
        if contrast == OMNIBUS:
            raise ValueError("moderated_t requires a contrast, not the omnibus hypothesis")
        self._check_contrast(contrast, assignment)
        config = config or StatisticalConfig()
        min_size = config.min_samples_per_group

        fits = _map_features(
            _group_means_fit, matrix, assignment, n_jobs=config.n_jobs, groups=assignment.groups
        )

        weights = contrast.weights
        testable = []
        results = {}
        for feature_id, means, sizes, sigma2, df_residual in fits:
            contrast_means = {g: means[g] for g in contrast.groups}
            contrast_sizes = {g: sizes[g] for g in contrast.groups}
            small = {g: n for g, n in contrast_sizes.items() if n < min_size}
            if small or df_residual < 1:
                detail = (
                    f"Groups below {min_size} observations: {small}" if small
                    else "No residual degrees of freedom"
                )
                results[feature_id] = _create_failed_result(
                    feature_id, contrast.name, self.test_method,
                    FailureReason.INSUFFICIENT_DATA, detail, contrast_means, contrast_sizes,
                )
            elif not np.isfinite(sigma2) or sigma2 <= 0:
                results[feature_id] = _create_failed_result(
                    feature_id, contrast.name, self.test_method,
                    FailureReason.UNDEFINED_STATISTIC,
                    "Zero or undefined residual variance", contrast_means, contrast_sizes,
                )
            else:
                testable.append((feature_id, means, sizes, sigma2, df_residual))

        if testable:
            sigma2_arr = np.array([t[3] for t in testable])
            df_arr = np.array([t[4] for t in testable])

            if len(testable) < 3:
                warnings.warn(
                    "Fewer than 3 features with valid variances; "
                    "empirical-Bayes moderation disabled",
                    UserWarning,
                    stacklevel=2,
                )
                s2_post, df_total = sigma2_arr, df_arr
            else:
                d0, s0_sq = fit_f_dist(sigma2_arr, df_arr)
                s2_post, df_total = squeeze_var(sigma2_arr, df_arr, d0, s0_sq)

            for i, (feature_id, means, sizes, _, _) in enumerate(testable):
                estimate = contrast.estimate(means)
                var_factor = sum(w ** 2 / sizes[g] for g, w in weights.items())
                se = np.sqrt(s2_post[i] * var_factor)
                t_stat = estimate / se
                if np.isinf(df_total[i]):
                    p_value = 2 * scipy_stats.norm.sf(abs(t_stat))
                else:
                    p_value = 2 * scipy_stats.t.sf(abs(t_stat), df_total[i])

                if not np.isfinite(p_value):
                    results[feature_id] = _create_failed_result(
                        feature_id, contrast.name, self.test_method,
                        FailureReason.UNDEFINED_STATISTIC, "Non-finite p-value", means, sizes,
                    )
                    continue

                results[feature_id] = FeatureTestResult(
                    feature_id=feature_id,
                    contrast=contrast.name,
                    test_method=self.test_method,
                    p_value=float(p_value),
                    statistic=float(t_stat),
                    effect_size=estimate,
                    df=float(df_total[i]),
                    group_means={g: means[g] for g in contrast.groups},
                    group_sizes={g: sizes[g] for g in contrast.groups},
                )

        return [results[fid] for fid in matrix.feature_ids]


def get_feature_test(config):
    """Map config.statistical_test_method to a FeatureTest strategy"""
    method = config.statistical_test_method
    if method == "anova":
        return OneWayAnovaTest()
    if method == "student_t":
        return TwoSampleTTest(equal_var=True)
    if method == "welch_t":
        return TwoSampleTTest(equal_var=False)
    if method == "moderated_t":
        return ModeratedTTest()
    raise ValueError(
        f"Unknown statistical method: {method}. "
        f"Supported methods: {', '.join(StatisticalConfig.SUPPORTED_METHODS)}"
    )


def run_feature_tests(matrix, assignment, contrast, config=None, test=None):
    """Run one test strategy over every feature for a single contrast."""
    config = config or StatisticalConfig()
    test = test or get_feature_test(config)
    return test.run(matrix, assignment, contrast, config)


# =============================================================================
# Multiple testing correction
# =============================================================================


def adjust_p_values(p_values, method="fdr_bh"):
    """
    Adjust a vector of p-values, leaving non-finite entries undefined.

    Non-finite entries (failed tests) are excluded from the number of tests m
    and stay NaN in the output.
    """
    p = np.asarray(p_values, dtype=float)
    adjusted = np.full(p.shape, np.nan)
    valid = np.isfinite(p)
    if not valid.any():
        return adjusted
    if method == "none":
        adjusted[valid] = p[valid]
    else:
        _, adj_valid, _, _ = multipletests(p[valid], method=method)
        adjusted[valid] = adj_valid
    return adjusted


def benjamini_hochberg(p_values):
    """Benjamini-Hochberg step-up FDR adjustment over the finite p-values."""
    return adjust_p_values(p_values, method="fdr_bh")


def apply_multiple_testing_correction(results, config=None):
    """Apply multiple testing correction within one contrast"""
    config = config or StatisticalConfig()
    contrasts = {r.contrast for r in results}
    if len(contrasts) > 1:
        raise ValueError(
            f"Correction must be applied per contrast; got results for {sorted(contrasts)}"
        )

    p_values = [np.nan if r.is_failed else r.p_value for r in results]
    adjusted = adjust_p_values(p_values, method=config.correction_method)
    return tuple(
        CorrectedResult(result=r, adj_p_value=float(adj)) for r, adj in zip(results, adjusted)
    )


# =============================================================================
# Effect size and decision rule
# =============================================================================


def compute_group_means(matrix, assignment):
    """Features x groups table of group means (missing values ignored)."""
    labels = pd.Series(assignment.labels_for(matrix.sample_ids), index=matrix.sample_ids)
    means = matrix.data.T.groupby(labels).mean().T
    return means[[g for g in assignment.groups if g in means.columns]]


def omnibus_effect_size(group_means):
    """Largest minus smallest group mean."""
    finite = [m for m in group_means.values() if np.isfinite(m)]
    if len(finite) < 2:
        return np.nan
    return float(max(finite) - min(finite))


def pairwise_effect_size(group_means, contrast):
    """Signed contrast estimate; positive means up in group_a."""
    return contrast.estimate(group_means)


def _attach_effect_sizes(results, effect_matrix, assignment, contrast):
    """Recompute effect sizes and group means from a separate matrix."""
    means_table = compute_group_means(effect_matrix, assignment)
    updated = []
    for res in results:
        if res.is_failed or res.feature_id not in means_table.index:
            updated.append(res)
            continue
        row = means_table.loc[res.feature_id].to_dict()
        if contrast == OMNIBUS:
            means = row
            effect = omnibus_effect_size(means)
        else:
            means = {g: row[g] for g in contrast.groups}
            effect = pairwise_effect_size(means, contrast)
        updated.append(replace(res, effect_size=effect, group_means=means))
    return updated


def classify_feature(corrected, config=None):
    """Label one corrected result; both thresholds are inclusive."""
    config = config or StatisticalConfig()
    if corrected.is_failed:
        return DecisionLabel.UNTESTABLE
    adj_p, effect = corrected.adj_p_value, corrected.effect_size
    if not (np.isfinite(adj_p) and np.isfinite(effect)):
        return DecisionLabel.UNTESTABLE
    if adj_p <= config.p_value_threshold and abs(effect) >= config.fold_change_threshold:
        return DecisionLabel.DIFFERENTIALLY_EXPRESSED
    return DecisionLabel.NOT_SIGNIFICANT


def apply_decision_rule(corrected_results, config=None):
    return {r.feature_id: classify_feature(r, config) for r in corrected_results}


# =============================================================================
# Pipelines
# =============================================================================


def _prepare_inputs(matrix, assignment, effect_matrix, config):
    if isinstance(matrix, pd.DataFrame):
        matrix = IntensityMatrix(matrix)
    if isinstance(effect_matrix, pd.DataFrame):
        effect_matrix = IntensityMatrix(effect_matrix)

    assignment.check_covers(matrix)
    assignment = assignment.restricted_to(matrix.sample_ids)
    if config.group_order:
        assignment = GroupAssignment(
            assignment.to_series().to_dict(), group_order=config.group_order
        )

    if effect_matrix is not None:
        if effect_matrix.feature_ids != matrix.feature_ids or \
           effect_matrix.sample_ids != matrix.sample_ids:
            raise ValueError("effect_matrix must have the same features and samples as matrix")

    return matrix, assignment, effect_matrix


def _build_result(result_cls, pipeline, contrast_name, test_name, raw, assignment, config):
    corrected = apply_multiple_testing_correction(raw, config)
    decisions = apply_decision_rule(corrected, config)
    return result_cls(
        pipeline=pipeline,
        contrast=contrast_name,
        test_method=test_name,
        results=corrected,
        decisions=decisions,
        groups=tuple(assignment.groups),
        p_value_threshold=config.p_value_threshold,
        fold_change_threshold=config.fold_change_threshold,
        fold_change_basis=config.fold_change_basis,
        correction_method=config.correction_method,
    )


def run_omnibus_pipeline(matrix, assignment, config=None, effect_matrix=None,
                         run_posthoc=None, verbose=True):
    """
    One-way ANOVA across all groups, per-run correction, decision, Tukey post-hoc.

    Parameters:
    -----------
    matrix : IntensityMatrix or pd.DataFrame
        Features x samples matrix the F-test (and post-hoc) is run on
    assignment : GroupAssignment
        Sample to group mapping; must cover every matrix sample
    config : StatisticalConfig, optional
        Thresholds and options (defaults used when omitted)
    effect_matrix : IntensityMatrix or pd.DataFrame, optional
        Matrix that fold changes are computed from (same shape as matrix);
        defaults to ``matrix``
    run_posthoc : bool, optional
        Overrides config.run_posthoc
    verbose : bool
        Print progress

    Returns:
    --------
    OmnibusResult
    """
    config = config or StatisticalConfig()
    config.validate()
    matrix, assignment, effect_matrix = _prepare_inputs(matrix, assignment, effect_matrix, config)
    run_posthoc = config.run_posthoc if run_posthoc is None else run_posthoc

    test = OneWayAnovaTest()

    if verbose:
        print("Running omnibus one-way ANOVA pipeline...")
        print(f"  Features: {len(matrix)}  Samples: {len(matrix.sample_ids)}")
        print(f"  Groups: {assignment.group_sizes()}")

    raw = test.run(matrix, assignment, OMNIBUS, config)
    if effect_matrix is not None:
        raw = _attach_effect_sizes(raw, effect_matrix, assignment, OMNIBUS)

    result = _build_result(OmnibusResult, "omnibus", OMNIBUS, test.name, raw, assignment, config)

    if run_posthoc and result.significant_ids:
        posthoc = run_tukey_posthoc(
            matrix,
            assignment,
            result.significant_ids,
            alpha=config.effective_posthoc_alpha,
            basis="scaled" if config.scale_before_stats else "log2",
            verbose=verbose,
        )
        result = replace(result, posthoc=posthoc)

    if verbose:
        print(f"✓ Omnibus analysis completed for {result.n_features} features")
        print(f"  Tested: {result.n_tested}  Failed: {result.n_failed}")
        print(f"  Differentially expressed: {len(result.significant_ids)}")

    return result


def run_contrast_pipeline(matrix, assignment, contrasts=None, config=None, test=None,
                          effect_matrix=None, verbose=True):
    """
    Per-contrast pairwise pipeline (Student/Welch/moderated t-test).

    Each contrast is tested, corrected and classified independently; adjusted
    p-values are never pooled across contrasts. Every contrast is validated
    before any test runs, so a bad label aborts with ConfigInconsistentError.

    Returns:
    --------
    ContrastResults
    """
    config = config or StatisticalConfig()
    config.validate()
    matrix, assignment, effect_matrix = _prepare_inputs(matrix, assignment, effect_matrix, config)

    test = test or get_feature_test(config)
    if test.pipeline == "omnibus":
        raise ValueError(
            f"'{test.name}' is an omnibus test; use run_omnibus_pipeline instead"
        )

    requested = contrasts if contrasts is not None else config.contrasts
    contrast_list = parse_contrasts(requested) if requested else all_pairwise_contrasts(assignment)
    if not contrast_list:
        raise ConfigInconsistentError("No contrasts to test")
    for contrast in contrast_list:
        contrast.validate(assignment)

    if verbose:
        print(f"Running pairwise {test.name} pipeline...")
        print(f"  Features: {len(matrix)}  Samples: {len(matrix.sample_ids)}")
        print(f"  Contrasts: {[c.name for c in contrast_list]}")

    per_contrast = {}
    for contrast in contrast_list:
        raw = test.run(matrix, assignment, contrast, config)
        if effect_matrix is not None:
            raw = _attach_effect_sizes(raw, effect_matrix, assignment, contrast)
        per_contrast[contrast.name] = _build_result(
            DifferentialResult, "pairwise", contrast.name, test.name, raw, assignment, config
        )
        if verbose:
            result = per_contrast[contrast.name]
            print(
                f"  {contrast.name}: {len(result.significant_ids)} differentially expressed, "
                f"{result.n_failed} untestable"
            )

    if verbose:
        print(f"✓ Pairwise analysis completed for {len(contrast_list)} contrasts")

    return ContrastResults(test_method=test.name, results=per_contrast)


def _apply_log_transformation_if_needed(data, config, verbose=True):
    """
    Apply log transformation to data if needed based on configuration.

    With "auto", data whose overall mean exceeds 50 is taken to be on the
    raw intensity scale.
    """
    setting = config.log_transform_before_stats

    if setting == "auto":
        mean_value = data.mean().mean()
        apply_log = bool(mean_value > 50)
        if verbose:
            status = "needed" if apply_log else "not needed"
            print(f"Log transformation: AUTO-DETECTED ({status} - mean value {mean_value:.1f})")
    elif str(setting).lower() in ["true", "1", "yes", "on"]:
        apply_log = True
        if verbose:
            print("Log transformation: ENABLED (forced by configuration)")
    else:
        apply_log = False
        if verbose:
            print("Log transformation: DISABLED (by configuration)")

    if not apply_log:
        return data

    if (data < 0).any().any():
        raise ValueError("Cannot log-transform data containing negative values")

    return log_transform(data, base=config.log_base, pseudocount=config.log_pseudocount,
                         verbose=verbose)


def prepare_analysis_matrices(data, config, verbose=True):
    """
    Build the matrix tests run on and the matrix fold changes come from.

    Returns:
    --------
    tuple (test_matrix, effect_matrix) of IntensityMatrix
    """
    frame = data.data if isinstance(data, IntensityMatrix) else data
    log_data = _apply_log_transformation_if_needed(frame, config, verbose=verbose)

    scaled = None
    if config.scale_before_stats or config.fold_change_basis == "scaled":
        scaled = center_scale_normalize(log_data, axis=config.scale_axis, verbose=verbose)

    test_data = scaled if config.scale_before_stats else log_data
    effect_data = log_data if config.fold_change_basis == "log2" else scaled

    if verbose:
        print(f"  Test statistics computed on: {'scaled' if config.scale_before_stats else 'log'} data")
        print(f"  Fold changes computed on: {config.fold_change_basis} data")

    return IntensityMatrix(test_data), IntensityMatrix(effect_data)


def run_comprehensive_statistical_analysis(data, group_assignment, config, contrasts=None,
                                           verbose=True):
    """
    Complete differential expression run from an intensity table.

    Parameters:
    -----------
    data : pd.DataFrame or IntensityMatrix
        Features x samples intensities (raw or log scale)
    group_assignment : GroupAssignment
        Sample to group mapping
    config : StatisticalConfig
        Configuration object with analysis parameters
    contrasts : list, optional
        Contrast specifications for pairwise methods (default: config.contrasts,
        then all pairs)

    Returns:
    --------
    OmnibusResult for 'anova', ContrastResults otherwise
    """

    if verbose:
        print("=" * 60)
        print("COMPREHENSIVE STATISTICAL ANALYSIS")
        print("=" * 60)

    try:
        config.validate()
    except ValueError as e:
        raise ValueError(f"Configuration error: {e}") from e

    if verbose:
        print("Step 1: Preparing analysis matrices...")
    test_matrix, effect_matrix = prepare_analysis_matrices(data, config, verbose=verbose)

    if verbose:
        print(f"\nStep 2: Running {config.statistical_test_method} analysis...")

    if config.statistical_test_method == "anova":
        result = run_omnibus_pipeline(
            test_matrix, group_assignment, config, effect_matrix=effect_matrix, verbose=verbose
        )
    else:
        result = run_contrast_pipeline(
            test_matrix, group_assignment, contrasts, config,
            effect_matrix=effect_matrix, verbose=verbose,
        )

    if verbose:
        print("\n✓ Statistical analysis completed!")

    return result


def display_analysis_summary(results, config=None, label_top_n=10):
    """
    Display summary of differential expression results

    Parameters:
    -----------
    results : DifferentialResult, OmnibusResult or ContrastResults
        Results from one of the pipelines
    config : StatisticalConfig, optional
        Only used for the header line
    label_top_n : int
        Number of top differentially expressed features to display

    Returns:
    --------
    dict
        Summary statistics keyed by contrast name
    """
    if isinstance(results, ContrastResults):
        per_contrast = list(results.results.values())
    else:
        per_contrast = [results]

    print("=" * 60)
    print("STATISTICAL ANALYSIS SUMMARY")
    print("=" * 60)
    if config is not None:
        print(f"  Method: {config.statistical_test_method.upper()}")
        print(
            f"  Thresholds: adj.P.Val <= {config.p_value_threshold}, "
            f"|logFC| >= {config.fold_change_threshold}"
        )

    summary = {}
    for result in per_contrast:
        df = result.to_dataframe()
        sig = result.significant()
        n_up = int((sig["logFC"] > 0).sum()) if len(sig) else 0
        n_down = int((sig["logFC"] < 0).sum()) if len(sig) else 0

        print(f"\n[{result.pipeline}] {result.contrast}")
        print(f"  Total features: {result.n_features:,}")
        print(f"  Tested: {result.n_tested:,}")
        print(f"  Differentially expressed: {len(sig):,}")
        if result.pipeline != "omnibus":
            print(f"    Up: {n_up}  Down: {n_down}")

        if len(sig) > 0:
            display_cols = ["Protein", "logFC", "P.Value", "adj.P.Val"]
            display_df = sig[display_cols].head(label_top_n).copy()
            for col in ["P.Value", "adj.P.Val"]:
                display_df[col] = display_df[col].apply(
                    lambda x: f"{x:.2e}" if pd.notna(x) and x < 0.01 else f"{x:.6f}"
                )
            display_df["logFC"] = display_df["logFC"].apply(lambda x: f"{x:.4f}")
            print(display_df.to_string(index=False))

        if result.n_failed:
            print("  Untestable features:")
            for reason, count in df["Failure"].value_counts().items():
                print(f"    {reason}: {count}")

        if isinstance(result, OmnibusResult) and result.posthoc:
            n_pairs = sum(len(p.significant_pairs) for p in result.posthoc.values())
            print(f"  Post-hoc: {n_pairs} significant group pairs across "
                  f"{len(result.posthoc)} features")

        summary[result.contrast] = {
            "pipeline": result.pipeline,
            "total_features": result.n_features,
            "valid_results": result.n_tested,
            "failed": result.n_failed,
            "differentially_expressed": len(sig),
            "up": n_up,
            "down": n_down,
        }

    print("\n✓ Analysis summary complete!")
    return summary
