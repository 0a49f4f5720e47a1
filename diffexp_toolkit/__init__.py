"""
Differential Expression Toolkit
===============================

A Python library for finding features (proteins, genes, transcripts) whose
abundance differs between groups of samples. It runs per-feature hypothesis
tests, corrects for multiple testing within each contrast, filters hits on
adjusted p-value and fold change, and resolves omnibus hits into the specific
group pairs that differ.

QUICK START EXAMPLE:
-------------------
    import diffexp_toolkit as dxt

    # 1. Load data
    matrix = dxt.load_intensity_table('intensities.tsv')
    assignment = dxt.load_group_config('groups.csv')

    # 2. Validate the design
    dxt.validate_design_consistency(matrix, assignment)

    # 3. Statistical analysis (ANOVA + Tukey by default)
    config = dxt.StatisticalConfig()
    results = dxt.run_comprehensive_statistical_analysis(matrix, assignment, config)

    # 4. Visualization and export
    dxt.plot_volcano(results.to_dataframe())
    dxt.export_complete_analysis(results, config)

MODULE OVERVIEW:
===============

data_import
    Purpose: Load the intensity table and the sample -> group configuration
    Key functions: load_intensity_table(), load_group_config()

experimental_design
    Purpose: Intensity matrix, group assignment and contrast containers
    Key classes: IntensityMatrix, GroupAssignment, Contrast

normalization
    Purpose: Log transformation and center/scale pre-processing
    Key functions: log_transform(), center_scale_normalize()

statistical_analysis
    Purpose: Per-feature tests, BH correction, decision rule and pipelines
    Key functions: run_omnibus_pipeline(), run_contrast_pipeline(),
                   run_comprehensive_statistical_analysis(), StatisticalConfig()

posthoc
    Purpose: Tukey HSD resolution of omnibus hits into group pairs
    Key functions: run_tukey_posthoc(), posthoc_to_dataframe()

empirical_bayes
    Purpose: limma-style variance moderation for the moderated t-test
    Key functions: fit_f_dist(), squeeze_var()

visualization
    Purpose: Volcano plots, per-feature group plots, post-hoc intervals
    Key functions: plot_volcano(), plot_feature_groups(), plot_posthoc_intervals()

validation
    Purpose: Design consistency checks, exception types, failure reasons
    Key functions: validate_design_consistency()

export
    Purpose: Export results, post-hoc tables, and timestamped configurations
    Key functions: export_complete_analysis(), export_timestamped_config()

TYPICAL WORKFLOW:
================
1. dxt.load_intensity_table() → Load features x samples intensities
2. dxt.load_group_config() → Load sample group labels
3. dxt.validate_design_consistency() → Check labels, groups and contrasts
4. dxt.run_comprehensive_statistical_analysis() → Omnibus or pairwise pipeline
5. dxt.display_analysis_summary() → Print hits and failure breakdown
6. dxt.plot_volcano() → Visualize results
7. dxt.export_complete_analysis() → Export everything for reproducibility

ERROR HANDLING:
==============
- ConfigInconsistentError: A contrast or group order names unknown labels;
  raised before any feature is tested
- SampleMatchingError: Samples in the matrix have no group assignment
- Per-feature failures (INSUFFICIENT_DATA, UNDEFINED_STATISTIC) never abort
  a run; they are reported on the result and labelled UNTESTABLE
"""

# =============================================================================
# MODULE IMPORTS - Core functionality organized by analysis stage
# =============================================================================

from . import validation          # Design validation and error types
from . import experimental_design # Matrix, groups and contrasts
from . import data_import         # Data loading
from . import normalization       # Pre-processing
from . import empirical_bayes     # Variance moderation
from . import posthoc             # Tukey post-hoc
from . import statistical_analysis # Statistical testing pipelines
from . import visualization       # Plotting
from . import export              # Results export and configuration management

__version__ = "1.0.0"

# =============================================================================
# CONVENIENCE IMPORTS - Most commonly used functions available at top level
# =============================================================================

# DATA LOADING
from .data_import import (
    load_intensity_table,     # Main function: Load features x samples table
    load_group_config,        # Load sample -> group mapping
)

# EXPERIMENTAL DESIGN
from .experimental_design import (
    OMNIBUS,
    IntensityMatrix,
    GroupAssignment,
    Contrast,
    parse_contrasts,
    all_pairwise_contrasts,
)

# NORMALIZATION
from .normalization import (
    log_transform,
    center_scale_normalize,
    check_no_missing,
)

# STATISTICAL ANALYSIS
from .statistical_analysis import (
    run_comprehensive_statistical_analysis, # Main function: Complete statistical analysis
    run_omnibus_pipeline,                  # ANOVA + BH + decision + Tukey
    run_contrast_pipeline,                 # Per-contrast t-tests + BH + decision
    run_feature_tests,                     # Lower-level: raw p-values for one contrast
    benjamini_hochberg,
    apply_multiple_testing_correction,
    classify_feature,
    apply_decision_rule,
    display_analysis_summary,
    StatisticalConfig,
    DecisionLabel,
    OneWayAnovaTest,
    TwoSampleTTest,
    ModeratedTTest,
)

# POST-HOC
from .posthoc import (
    run_tukey_posthoc,
    resolve_omnibus_hits,
    posthoc_to_dataframe,
)

# DATA VALIDATION
from .validation import (
    validate_design_consistency,
    generate_design_diagnostic_report,
    ConfigInconsistentError,
    SampleMatchingError,
    FailureReason,
)

# DATA EXPORT
from .export import (
    export_complete_analysis,
    export_differential_results,
    export_posthoc_results,
    export_significant_proteins_summary,
    export_timestamped_config,
)

# VISUALIZATION
from .visualization import (
    plot_volcano,
    plot_feature_groups,
    plot_posthoc_intervals,
)

# =============================================================================
# PUBLIC API - All functions available for import
# =============================================================================

__all__ = [
    # MODULES
    "validation",
    "experimental_design",
    "data_import",
    "normalization",
    "empirical_bayes",
    "posthoc",
    "statistical_analysis",
    "visualization",
    "export",

    # DATA LOADING
    "load_intensity_table",
    "load_group_config",

    # EXPERIMENTAL DESIGN
    "OMNIBUS",
    "IntensityMatrix",
    "GroupAssignment",
    "Contrast",
    "parse_contrasts",
    "all_pairwise_contrasts",

    # NORMALIZATION
    "log_transform",
    "center_scale_normalize",
    "check_no_missing",

    # STATISTICAL ANALYSIS
    "run_comprehensive_statistical_analysis",
    "run_omnibus_pipeline",
    "run_contrast_pipeline",
    "run_feature_tests",
    "benjamini_hochberg",
    "apply_multiple_testing_correction",
    "classify_feature",
    "apply_decision_rule",
    "display_analysis_summary",
    "StatisticalConfig",
    "DecisionLabel",
    "OneWayAnovaTest",
    "TwoSampleTTest",
    "ModeratedTTest",

    # POST-HOC
    "run_tukey_posthoc",
    "resolve_omnibus_hits",
    "posthoc_to_dataframe",

    # VALIDATION
    "validate_design_consistency",
    "generate_design_diagnostic_report",
    "ConfigInconsistentError",
    "SampleMatchingError",
    "FailureReason",

    # EXPORT
    "export_complete_analysis",
    "export_differential_results",
    "export_posthoc_results",
    "export_significant_proteins_summary",
    "export_timestamped_config",

    # VISUALIZATION
    "plot_volcano",
    "plot_feature_groups",
    "plot_posthoc_intervals",
]
