from nparc.visualization.distributions import (
    plot_f_statistic_distribution,
    plot_p_value_histogram,
)
from nparc.visualization.melting_curves import create_protein_fit_plot

__all__ = [
    "create_protein_fit_plot",
    "plot_f_statistic_distribution",
    "plot_p_value_histogram",
]
