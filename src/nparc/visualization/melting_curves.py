import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.colors import qualitative

from nparc.processing.sigmoid import melting_curve
from nparc.utils.validation import validate_required_columns

N_CURVE_POINTS = 200
NULL_GROUP = "null"


def _group_label(group: str) -> str:
    return "Null model" if group == NULL_GROUP else f"Concentration {group}"


def _curve_points(
    metrics_row: pd.Series, t_min: float, t_max: float
) -> tuple[np.ndarray, np.ndarray]:
    """Evaluate one fitted curve on a regular temperature grid."""
    x = np.linspace(t_min, t_max, N_CURVE_POINTS)
    y = melting_curve(x, metrics_row["plateau"], metrics_row["a"], metrics_row["b"])
    return x, y


def create_protein_fit_plot(
    protein_data: pd.DataFrame,
    curve_metrics: pd.DataFrame,
    show_melting_points: bool = True,
) -> go.Figure:
    """Create a melting curve plot of one protein with its null and alternative fits.

    Observed relative abundances are drawn as markers, one colour per compound
    concentration. Each converged alternative fit is drawn as a line in the colour of its
    concentration, the null fit as a dashed black line.

    Args:
        protein_data: Tidy TPP rows of a single protein in a single dataset
        curve_metrics: Rows of ``compute_curve_metrics`` for the same protein
        show_melting_points: Mark the melting point of every alternative fit

    Returns:
        plotly.graph_objects.Figure
    """
    validate_required_columns(
        protein_data, ["protein_id", "temperature", "rel_abundance", "compound_concentration"]
    )
    validate_required_columns(curve_metrics, ["group", "plateau", "a", "b", "converged"])

    t_min = float(protein_data["temperature"].min())
    t_max = float(protein_data["temperature"].max())
    colors = qualitative.Plotly

    fig = go.Figure()

    concentrations = sorted(protein_data["compound_concentration"].unique())
    for i, concentration in enumerate(concentrations):
        group_data = protein_data.loc[protein_data["compound_concentration"] == concentration]
        color = colors[i % len(colors)]
        label = str(concentration)

        fig.add_trace(
            go.Scatter(
                x=group_data["temperature"],
                y=group_data["rel_abundance"],
                name=f"{_group_label(label)} (observed)",
                mode="markers",
                marker=dict(color=color),
                legendgroup=label,
            )
        )

        fit = curve_metrics.loc[
            (curve_metrics["group"] == label) & curve_metrics["converged"].astype(bool)
        ]
        if fit.empty:
            continue
        x, y = _curve_points(fit.iloc[0], t_min, t_max)
        fig.add_trace(
            go.Scatter(
                x=x, y=y, name=_group_label(label), line=dict(color=color), legendgroup=label
            )
        )

        tm = fit.iloc[0].get("melting_point", np.nan)
        if show_melting_points and pd.notna(tm):
            fig.add_vline(x=tm, line_dash="dot", line_color=color)

    null_fit = curve_metrics.loc[
        (curve_metrics["group"] == NULL_GROUP) & curve_metrics["converged"].astype(bool)
    ]
    if not null_fit.empty:
        x, y = _curve_points(null_fit.iloc[0], t_min, t_max)
        fig.add_trace(
            go.Scatter(
                x=x, y=y, name=_group_label(NULL_GROUP), line=dict(color="black", dash="dash")
            )
        )

    protein_id = protein_data["protein_id"].iloc[0]
    fig.update_layout(
        title=str(protein_id),
        height=500,
        showlegend=True,
        xaxis_title="Temperature (°C)",
        yaxis_title="Relative abundance",
    )

    return fig
