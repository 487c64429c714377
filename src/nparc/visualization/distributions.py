import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from scipy import stats

from nparc.processing.dof import DegreesOfFreedom
from nparc.utils.validation import validate_required_columns

N_DENSITY_POINTS = 200


def plot_f_statistic_distribution(
    results: pd.DataFrame, dof: dict[str, DegreesOfFreedom], nbins: int = 50
) -> go.Figure:
    """Histogram of the F-statistics of each dataset with the fitted F-density on top.

    Args:
        results: Test results from ``run_f_tests``
        dof: F-distribution parameters per dataset, from ``estimate_dof``
        nbins: Number of histogram bins

    Returns:
        plotly.graph_objects.Figure with one row per dataset
    """
    validate_required_columns(results, ["dataset", "f_statistic"])
    datasets = sorted(set(results["dataset"]) & set(dof))
    if not datasets:
        raise ValueError("No dataset has both results and degrees of freedom")

    fig = make_subplots(
        rows=len(datasets),
        cols=1,
        vertical_spacing=min(0.1, 1 / max(len(datasets) - 1, 1)),
        subplot_titles=[str(d) for d in datasets],
    )

    for row, dataset in enumerate(datasets, start=1):
        params = dof[dataset]
        f_values = results.loc[results["dataset"] == dataset, "f_statistic"].to_numpy(dtype=float)
        f_values = f_values[np.isfinite(f_values)]

        fig.add_trace(
            go.Histogram(
                x=f_values,
                nbinsx=nbins,
                histnorm="probability density",
                name=f"{dataset} F-statistics",
                marker_color="lightgrey",
            ),
            row=row,
            col=1,
        )

        # the upper percentile keeps single huge statistics from flattening the density
        x_max = float(np.nanpercentile(f_values, 99)) if f_values.size else 10.0
        x = np.linspace(0, max(x_max, 1.0), N_DENSITY_POINTS)[1:]
        fig.add_trace(
            go.Scatter(
                x=x,
                y=stats.f.pdf(x, dfn=params.df1, dfd=params.df2),
                name=f"F({params.df1:.2f}, {params.df2:.2f})",
                line=dict(color="red"),
            ),
            row=row,
            col=1,
        )

    fig.update_layout(
        height=350 * len(datasets),
        showlegend=True,
        yaxis_title="Density",
    )
    fig.update_xaxes(title_text="F-statistic", row=len(datasets), col=1)

    return fig


def plot_p_value_histogram(results: pd.DataFrame, nbins: int = 20) -> go.Figure:
    """Overlaid histograms of the raw p-values of each dataset.

    Under the null hypothesis p-values are uniform, so a flat histogram with a peak near
    zero indicates well calibrated degrees of freedom.
    """
    validate_required_columns(results, ["dataset", "p_value"])

    fig = go.Figure()
    for dataset, dataset_results in results.groupby("dataset", sort=True):
        fig.add_trace(
            go.Histogram(
                x=dataset_results["p_value"].dropna(),
                xbins=dict(start=0, end=1, size=1 / nbins),
                name=str(dataset),
                opacity=0.6,
            )
        )

    fig.update_layout(
        barmode="overlay",
        height=500,
        showlegend=True,
        xaxis_title="p-value",
        yaxis_title="Number of proteins",
    )

    return fig
