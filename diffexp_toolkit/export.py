"""
Export Module for Differential Expression Toolkit

This module handles exporting differential expression results, post-hoc
tables, and timestamped configuration files. Every results filename carries
the name of the pipeline that produced it, so omnibus and pairwise outputs
are never written to the same file.
"""

import pandas as pd
from datetime import datetime
from typing import Dict, Any, Optional, List

from .statistical_analysis import ContrastResults, OmnibusResult, StatisticalConfig


def _pipeline_tag(results) -> str:
    return f"{results.pipeline}_{results.test_method}"


def export_differential_results(
    results,
    output_prefix: str = "diffexp_analysis",
    include_untestable: bool = True,
) -> Dict[str, str]:
    """
    Export the full results table of a pipeline run.

    Parameters:
    -----------
    results : DifferentialResult, OmnibusResult or ContrastResults
        Output of run_omnibus_pipeline or run_contrast_pipeline
    output_prefix : str
        Prefix for output filenames (may include a directory)
    include_untestable : bool
        Also write the untestable features with their failure reasons

    Returns:
    --------
    dict
        Dictionary of exported files
    """

    print("Exporting differential expression results...")

    exported_files = {}
    tag = _pipeline_tag(results)

    table = results.to_dataframe()
    results_file = f"{output_prefix}_{tag}_differential_results.csv"
    table.to_csv(results_file, index=False)
    exported_files["differential_results"] = results_file
    print(f"Differential results exported to: {results_file}")

    if include_untestable:
        failed = table[table["Failure"].notna()]
        if len(failed) > 0:
            failed_file = f"{output_prefix}_{tag}_untestable_features.csv"
            failed[["Protein", "Contrast", "Failure", "Failure_Detail", "test_method"]].to_csv(
                failed_file, index=False
            )
            exported_files["untestable_features"] = failed_file
            print(f"Untestable features ({len(failed)}) exported to: {failed_file}")

    return exported_files


def export_posthoc_results(
    omnibus_result: OmnibusResult, output_prefix: str = "diffexp_analysis"
) -> str:
    """
    Export the Tukey post-hoc table of an omnibus run.

    Returns:
    --------
    str
        Path to exported file, or "" when there were no omnibus hits
    """
    if not isinstance(omnibus_result, OmnibusResult):
        raise ValueError("Post-hoc export requires an omnibus pipeline result")

    table = omnibus_result.posthoc_table()
    if table.empty:
        print("No post-hoc results (no omnibus hits) - skipping post-hoc export")
        return ""

    posthoc_file = f"{output_prefix}_{_pipeline_tag(omnibus_result)}_tukey_posthoc.csv"
    table.to_csv(posthoc_file, index=False)
    print(f"Tukey post-hoc results exported to: {posthoc_file}")
    print(f"  • Features: {table['Protein'].nunique()}")
    print(f"  • Significant pairs: {int(table['reject'].sum())}")
    return posthoc_file


def export_significant_proteins_summary(
    results, output_prefix: str = "diffexp_analysis"
) -> str:
    """
    Export a summary of differentially expressed features with key statistics.

    Parameters:
    -----------
    results : DifferentialResult, OmnibusResult or ContrastResults
        Pipeline output
    output_prefix : str
        Prefix for output filename

    Returns:
    --------
    str
        Path to exported summary file
    """
    table = results.to_dataframe()
    significant_results = table[table["Decision"] == "differentially_expressed"]

    if len(significant_results) == 0:
        print("No differentially expressed features found - skipping summary export")
        return ""

    summary_file = f"{output_prefix}_{_pipeline_tag(results)}_significant_proteins_summary.csv"

    summary_cols = ["Protein", "Contrast", "logFC", "P.Value", "adj.P.Val", "test_method"]
    summary_data = significant_results[summary_cols].copy()

    if results.pipeline == "omnibus":
        # Omnibus effect is a spread (max - min), it has no direction
        summary_data["Regulation"] = "Varies"
    else:
        summary_data["Regulation"] = summary_data["logFC"].apply(
            lambda x: "Up" if x > 0 else "Down"
        )

    summary_data = summary_data.sort_values(["Contrast", "adj.P.Val"])

    summary_data.to_csv(summary_file, index=False)
    print(f"Significant proteins summary exported to: {summary_file}")
    print(f"  • Total significant: {len(summary_data)}")
    if results.pipeline != "omnibus":
        print(f"  • Upregulated: {(summary_data['Regulation'] == 'Up').sum()}")
        print(f"  • Downregulated: {(summary_data['Regulation'] == 'Down').sum()}")

    return summary_file


def export_timestamped_config(
    config,
    output_prefix: str = "diffexp_analysis",
    analysis_description: str = "Differential expression analysis",
    computed_values: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Export analysis configuration as a timestamped Python file.

    Parameters:
    -----------
    config : StatisticalConfig or dict
        Configuration parameters
    output_prefix : str
        Prefix for the configuration filename
    analysis_description : str
        Description of the analysis type
    computed_values : dict, optional
        Additional computed values to include as comments

    Returns:
    --------
    str
        Path to the exported configuration file
    """
    config_dict = config.to_dict() if isinstance(config, StatisticalConfig) else dict(config)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    config_file = f"{output_prefix}_config_{timestamp}.py"

    print(f"Exporting analysis configuration to: {config_file}")

    with open(config_file, "w", encoding="utf-8") as f:
        f.write(
            "# =============================================================================\n"
        )
        f.write("# DIFFERENTIAL EXPRESSION ANALYSIS CONFIGURATION\n")
        f.write(f"# Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
        f.write(f"# Analysis: {analysis_description}\n")
        f.write(
            "# =============================================================================\n\n"
        )

        section_configs = [
            (
                1,
                "STATISTICAL ANALYSIS STRATEGY",
                ["statistical_test_method", "correction_method", "n_jobs"],
            ),
            (
                2,
                "EXPERIMENTAL DESIGN CONFIGURATION",
                ["group_order", "contrasts", "min_samples_per_group"],
            ),
            (
                3,
                "PRE-PROCESSING",
                [
                    "log_transform_before_stats",
                    "log_base",
                    "log_pseudocount",
                    "scale_before_stats",
                    "scale_axis",
                ],
            ),
            (
                4,
                "SIGNIFICANCE THRESHOLDS",
                ["p_value_threshold", "fold_change_threshold", "fold_change_basis"],
            ),
            (5, "POST-HOC SETTINGS", ["run_posthoc", "posthoc_alpha"]),
        ]

        written = set()
        for section_num, section_name, param_names in section_configs:
            _write_config_section(f, section_name, config_dict, param_names, section_num)
            written.update(param_names)

        remaining = [k for k in config_dict if k not in written]
        if remaining:
            _write_config_section(
                f, "OTHER SETTINGS", config_dict, remaining, len(section_configs) + 1
            )

        if computed_values:
            f.write(
                "# =============================================================================\n"
            )
            f.write("# COMPUTED VALUES (for reference)\n")
            f.write(
                "# =============================================================================\n"
            )
            for key, value in computed_values.items():
                f.write(f"# {key}: {value}\n")

    return config_file


def _write_config_section(
    file_handle,
    section_name: str,
    config_dict: Dict[str, Any],
    param_names: List[str],
    section_number: int = 1,
) -> None:
    """Write a configuration section to file."""

    file_handle.write(
        "# =============================================================================\n"
    )
    file_handle.write(f"# {section_number}. {section_name}\n")
    file_handle.write(
        "# =============================================================================\n"
    )

    for param in param_names:
        if param in config_dict:
            value = config_dict[param]
            file_handle.write(f"{param} = {repr(value)}\n")

    file_handle.write("\n")


def export_complete_analysis(
    results,
    config: StatisticalConfig,
    output_prefix: str = "diffexp_analysis",
    analysis_description: str = "Differential expression analysis",
) -> Dict[str, str]:
    """
    Export results, post-hoc table (omnibus runs), DE summary and configuration.

    Returns:
    --------
    dict
        Dictionary of exported files
    """
    exported_files = export_differential_results(results, output_prefix)

    if isinstance(results, OmnibusResult):
        posthoc_file = export_posthoc_results(results, output_prefix)
        if posthoc_file:
            exported_files["posthoc_results"] = posthoc_file

    summary_file = export_significant_proteins_summary(results, output_prefix)
    if summary_file:
        exported_files["significant_summary"] = summary_file

    if isinstance(results, ContrastResults):
        n_significant = sum(len(r.significant_ids) for r in results.results.values())
        contrasts = results.contrasts
    else:
        n_significant = len(results.significant_ids)
        contrasts = [results.contrast]

    exported_files["config"] = export_timestamped_config(
        config,
        output_prefix,
        analysis_description,
        computed_values={
            "pipeline": results.pipeline,
            "contrasts": contrasts,
            "differentially_expressed": n_significant,
        },
    )

    _print_export_summary(exported_files)
    return exported_files


def _print_export_summary(exported_files: Dict[str, str]) -> None:
    print("\n" + "=" * 60)
    print("EXPORT SUMMARY")
    print("=" * 60)
    for kind, path in exported_files.items():
        print(f"  {kind}: {path}")
    print(f"\n✓ {len(exported_files)} files exported")
