"""
Visualization Module for Differential Expression Toolkit

Functions for plotting differential expression results: volcano plots,
per-feature group distributions, and Tukey post-hoc confidence intervals.
"""

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Optional, Tuple


def plot_volcano(
    differential_df: pd.DataFrame,
    fc_threshold: float = 0.5,
    p_threshold: float = 0.05,
    figsize: Tuple[int, int] = (12, 8),
    title: Optional[str] = None,
    label_column: str = "Protein",
    label_top_n: int = 10,
    use_adjusted_pvalue: bool = True,
):
    """
    Create volcano plot for differential analysis results.

    Both thresholds are inclusive, matching the decision rule.

    Parameters:
    -----------
    differential_df : pd.DataFrame
        Differential analysis results (DifferentialResult.to_dataframe())
    fc_threshold : float
        Fold change threshold for significance
    p_threshold : float
        P-value threshold (applied to selected p-value type)
    figsize : Tuple[int, int]
        Figure size (width, height)
    title : str, optional
        Plot title
    label_column : str
        Column name for point labels
    label_top_n : int
        Number of top significant features to label
    use_adjusted_pvalue : bool
        Use 'adj.P.Val' (True) or 'P.Value' (False)

    Returns:
    --------
    matplotlib.figure.Figure or None
    """

    p_col_used = "adj.P.Val" if use_adjusted_pvalue else "P.Value"
    p_type_label = "FDR" if use_adjusted_pvalue else "P-value"

    if p_col_used not in differential_df.columns:
        print(f"ERROR: No '{p_col_used}' column found")
        return None

    # Untestable features have no p-value to plot
    df = differential_df.dropna(subset=[p_col_used, "logFC"]).copy()
    if len(df) == 0:
        print("No data to plot")
        return None

    df["neg_log10_p"] = -np.log10(df[p_col_used].clip(lower=np.finfo(float).tiny))

    is_sig = df[p_col_used] <= p_threshold
    is_large = df["logFC"].abs() >= fc_threshold
    df["category"] = "Not significant"
    df.loc[is_sig, "category"] = "Significant"
    df.loc[is_sig & is_large & (df["logFC"] > 0), "category"] = "Increased"
    df.loc[is_sig & is_large & (df["logFC"] < 0), "category"] = "Decreased"

    fig, ax = plt.subplots(figsize=figsize)

    palette = {
        "Not significant": "gray",
        "Significant": "orange",
        "Decreased": "blue",
        "Increased": "red",
    }
    for category, color in palette.items():
        subset = df[df["category"] == category]
        if len(subset) > 0:
            ax.scatter(
                subset["logFC"],
                subset["neg_log10_p"],
                c=color,
                alpha=0.6,
                s=30,
                label=category,
            )

    ax.axhline(y=-np.log10(p_threshold), color="black", linestyle="--", alpha=0.5)
    ax.axvline(x=fc_threshold, color="black", linestyle="--", alpha=0.5)
    ax.axvline(x=-fc_threshold, color="black", linestyle="--", alpha=0.5)

    if label_top_n > 0 and label_column in df.columns:
        top = df[df["category"].isin(["Increased", "Decreased"])]
        top = top.sort_values(p_col_used).head(label_top_n)
        for _, row in top.iterrows():
            ax.annotate(
                row[label_column],
                (row["logFC"], row["neg_log10_p"]),
                xytext=(5, 5),
                textcoords="offset points",
                fontsize=8,
                alpha=0.7,
            )

    if title is None:
        title = f"Volcano Plot (|FC| >= {fc_threshold}, {p_type_label} <= {p_threshold})"
    print(f"\n{title}")

    ax.set_xlabel("Log2 Fold Change", fontsize=16, fontweight="bold")
    ax.set_ylabel(f"-Log10 {p_type_label}", fontsize=16, fontweight="bold")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.spines["left"].set_linewidth(2)
    ax.spines["bottom"].set_linewidth(2)
    ax.tick_params(axis="both", which="major", labelsize=12, width=1.5, length=6)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper right", frameon=True, fancybox=True, shadow=True, fontsize=11)

    plt.tight_layout()
    plt.show()

    n_up = int((df["category"] == "Increased").sum())
    n_down = int((df["category"] == "Decreased").sum())
    print("Volcano plot summary:")
    print(f"Total features: {len(df)}")
    print(f"Significant ({p_type_label} <= {p_threshold}): {int(is_sig.sum())}")
    print(f"Up-regulated: {n_up}")
    print(f"Down-regulated: {n_down}")

    return fig


def plot_feature_groups(
    matrix,
    assignment,
    feature_id: str,
    figsize: Tuple[int, int] = (8, 6),
    title: Optional[str] = None,
):
    """
    Box plot with overlaid points of one feature's values by group.

    Parameters:
    -----------
    matrix : IntensityMatrix
        Features x samples matrix
    assignment : GroupAssignment
        Sample to group mapping; its group order sets the x-axis order
    feature_id : str
        Feature to plot
    """
    if feature_id not in matrix.feature_ids:
        raise ValueError(f"Feature '{feature_id}' not found in matrix")

    values = matrix.row(feature_id)
    plot_df = pd.DataFrame({
        "Intensity": values.to_numpy(dtype=float),
        "Group": assignment.labels_for(values.index),
    }).dropna()

    fig, ax = plt.subplots(figsize=figsize)
    order = [g for g in assignment.groups if g in set(plot_df["Group"])]
    sns.boxplot(data=plot_df, x="Group", y="Intensity", order=order, ax=ax,
                color="lightgray", showfliers=False)
    sns.stripplot(data=plot_df, x="Group", y="Intensity", order=order, ax=ax,
                  color="black", size=5, alpha=0.7)

    ax.set_title(title or feature_id, fontsize=14, fontweight="bold")
    ax.set_xlabel("Group", fontsize=12)
    ax.set_ylabel("Intensity", fontsize=12)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    plt.tight_layout()
    plt.show()
    return fig


def plot_posthoc_intervals(
    posthoc_df: pd.DataFrame,
    feature_id: str,
    figsize: Tuple[int, int] = (8, 5),
    title: Optional[str] = None,
):
    """
    Tukey HSD simultaneous confidence intervals for one feature.

    Intervals that exclude zero (rejected pairs) are drawn in red.

    Parameters:
    -----------
    posthoc_df : pd.DataFrame
        Output of posthoc_to_dataframe / OmnibusResult.posthoc_table()
    feature_id : str
        Feature to plot
    """
    feature_df = posthoc_df[posthoc_df["Protein"] == feature_id]
    if feature_df.empty:
        print(f"No post-hoc results for {feature_id}")
        return None

    fig, ax = plt.subplots(figsize=figsize)
    y_positions = np.arange(len(feature_df))

    for y, (_, row) in zip(y_positions, feature_df.iterrows()):
        color = "red" if row["reject"] else "gray"
        ax.errorbar(
            row["meandiff"],
            y,
            xerr=[[row["meandiff"] - row["lower"]], [row["upper"] - row["meandiff"]]],
            fmt="o",
            color=color,
            capsize=4,
        )

    ax.axvline(x=0, color="black", linestyle="--", alpha=0.5)
    ax.set_yticks(y_positions)
    ax.set_yticklabels(feature_df["Comparison"])
    ax.set_xlabel("Mean difference", fontsize=12)
    ax.set_title(title or f"Tukey HSD: {feature_id}", fontsize=14, fontweight="bold")
    ax.grid(True, axis="x", alpha=0.3)

    plt.tight_layout()
    plt.show()
    return fig
