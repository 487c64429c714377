from nparc.processing.dof import DegreesOfFreedom, DegreesOfFreedomError, estimate_dof
from nparc.processing.filtering import filter_tidy_data
from nparc.processing.hypothesis_test import (
    adjust_p_values,
    call_hits,
    compute_f_statistic,
    compute_p_values,
    run_f_tests,
    summarize_results,
)
from nparc.processing.pipeline import (
    NPARCConfig,
    NPARCResult,
    compute_curve_metrics,
    run_nparc,
)
from nparc.processing.rss import compare_models, compute_rss_table, fit_protein
from nparc.processing.sigmoid import (
    FitResult,
    SigmoidFitConfig,
    SigmoidParams,
    fit_sigmoid,
    fit_sigmoid_with_retry,
    melting_curve,
)

__all__ = [
    "DegreesOfFreedom",
    "DegreesOfFreedomError",
    "FitResult",
    "NPARCConfig",
    "NPARCResult",
    "SigmoidFitConfig",
    "SigmoidParams",
    "adjust_p_values",
    "call_hits",
    "compare_models",
    "compute_curve_metrics",
    "compute_f_statistic",
    "compute_p_values",
    "compute_rss_table",
    "estimate_dof",
    "filter_tidy_data",
    "fit_protein",
    "fit_sigmoid",
    "fit_sigmoid_with_retry",
    "melting_curve",
    "run_f_tests",
    "run_nparc",
    "summarize_results",
]
