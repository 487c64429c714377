"""Degrees of freedom of the NPARC F-statistic.

Residuals of neighbouring temperatures are correlated and the data are often heteroscedastic,
so the textbook degrees of freedom (number of parameters and points) make the F-test too
liberal. Instead the RSS difference and the alternative RSS of all proteins in a dataset are
rescaled by a robust variance estimate and chi-squared distributions are fitted to them by
maximum likelihood. Their degrees of freedom become the parameters of the F-distribution.

Estimation needs the RSS comparison records of every protein in a dataset, so it can only
start once all per-protein fits of that dataset are done.

References:
    Childs et al. 2019, Mol Cell Proteomics 18(12), 2506-2515. doi:10.1074/mcp.TIR119.001481
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import optimize, special, stats

from nparc.utils.validation import validate_required_columns

logger = logging.getLogger(__name__)

DOF_METHODS = ("empirical", "theoretical")
MIN_RECORDS = 2
# df must stay positive while optimising
MIN_DF = 1e-8


class DegreesOfFreedomError(RuntimeError):
    """Degrees of freedom could not be estimated for a dataset."""


@dataclass(frozen=True)
class DegreesOfFreedom:
    """Parameters of the reference F-distribution of one dataset.

    Attributes:
        dataset: Dataset the parameters belong to.
        s0_sq: Scale factor applied to the RSS values before fitting. 1 for the theoretical
            method.
        df1: Numerator degrees of freedom.
        df2: Denominator degrees of freedom.
        n_proteins: Number of RSS comparison records used.
        method: "empirical" or "theoretical".
    """

    dataset: str
    s0_sq: float
    df1: float
    df2: float
    n_proteins: int
    method: str


def estimate_s0_sq(rss_diff: np.ndarray | pd.Series) -> float:
    """Robust scale factor of the RSS differences, 0.5 * MAD^2 / median.

    The MAD is scaled to be consistent with the standard deviation of normal data. For
    sigma^2-scaled chi-squared data with many degrees of freedom this approximates
    0.5 * variance / mean = sigma^2.

    Raises:
        DegreesOfFreedomError: With fewer than two finite values or a non-positive median or
            MAD.
    """
    x = np.asarray(rss_diff, dtype=float)
    x = x[np.isfinite(x)]
    if x.size < MIN_RECORDS:
        raise DegreesOfFreedomError(f"need at least {MIN_RECORDS} RSS differences, got {x.size}")

    m = float(np.median(x))
    v = float(stats.median_abs_deviation(x, scale="normal")) ** 2
    if m <= 0 or v <= 0:
        raise DegreesOfFreedomError(
            f"cannot scale RSS differences with median {m:.3g} and squared MAD {v:.3g}"
        )

    return 0.5 * v / m


def _chisq_neg_log_likelihood(df: np.ndarray, x: np.ndarray, sum_log_x: float) -> float:
    k = df[0]
    log_norm = k / 2 * np.log(2) + special.gammaln(k / 2)
    return -float((k / 2 - 1) * sum_log_x - x.sum() / 2 - x.size * log_norm)


def _chisq_neg_log_likelihood_grad(df: np.ndarray, x: np.ndarray, sum_log_x: float) -> np.ndarray:
    k = df[0]
    return -np.array([0.5 * sum_log_x - x.size * 0.5 * (np.log(2) + special.digamma(k / 2))])


def fit_chisq_df(values: np.ndarray | pd.Series, start: float = 1.0) -> float:
    """Maximum-likelihood estimate of the degrees of freedom of a chi-squared sample.

    Args:
        values: Observations. Non-finite and non-positive values are ignored.
        start: Starting value of the optimisation.

    Returns:
        float: Estimated degrees of freedom.

    Raises:
        DegreesOfFreedomError: With fewer than two usable values or if the optimiser does not
            converge.
    """
    x = np.asarray(values, dtype=float)
    x = x[np.isfinite(x)]
    n_nonpositive = int((x <= 0).sum())
    if n_nonpositive:
        logger.debug("Ignoring %d non-positive values in chi-squared fit", n_nonpositive)
        x = x[x > 0]
    if x.size < MIN_RECORDS:
        raise DegreesOfFreedomError(f"need at least {MIN_RECORDS} positive values, got {x.size}")

    # Same likelihood as stats.chi2.fit(x, floc=0, fscale=1), but minimize reports whether
    # the optimiser converged.
    sum_log_x = float(np.log(x).sum())
    result = optimize.minimize(
        _chisq_neg_log_likelihood,
        x0=np.array([start], dtype=float),
        args=(x, sum_log_x),
        jac=_chisq_neg_log_likelihood_grad,
        method="L-BFGS-B",
        bounds=[(MIN_DF, None)],
    )
    df = float(result.x[0])
    if not result.success or not np.isfinite(df) or df <= MIN_DF:
        raise DegreesOfFreedomError(f"chi-squared fit did not converge: {result.message}")

    return df


def _applicable_records(rss_table: pd.DataFrame, dataset: str) -> pd.DataFrame:
    validate_required_columns(rss_table, ["dataset", "rss1", "rss_diff", "applicable"])
    in_dataset = rss_table["dataset"] == dataset
    return rss_table.loc[in_dataset & rss_table["applicable"].astype(bool)]


def estimate_empirical_dof(rss_table: pd.DataFrame, dataset: str) -> DegreesOfFreedom:
    """Fit the F-distribution parameters of one dataset from its applicable records."""
    records = _applicable_records(rss_table, dataset)
    s0_sq = estimate_s0_sq(records["rss_diff"])

    df1 = fit_chisq_df(records["rss_diff"] / s0_sq)
    df2 = fit_chisq_df(records["rss1"] / s0_sq)
    logger.info(
        "Dataset %s: s0^2 = %.4g, df1 = %.3f, df2 = %.3f from %d proteins",
        dataset,
        s0_sq,
        df1,
        df2,
        len(records),
    )

    return DegreesOfFreedom(
        dataset=dataset,
        s0_sq=s0_sq,
        df1=df1,
        df2=df2,
        n_proteins=len(records),
        method="empirical",
    )


def estimate_theoretical_dof(rss_table: pd.DataFrame, dataset: str) -> DegreesOfFreedom:
    """Textbook degrees of freedom from the model sizes and the number of fitted points.

    df1 is the number of extra parameters of the alternative model and df2 the number of
    fitted points minus the parameters of the alternative model.
    """
    records = _applicable_records(rss_table, dataset)
    if records.empty:
        raise DegreesOfFreedomError("no applicable records")

    sizes = records[["n_coeffs0", "n_coeffs1", "n_fitted1"]].drop_duplicates()
    if len(sizes) != 1:
        raise DegreesOfFreedomError("model sizes differ between proteins")
    n_coeffs0, n_coeffs1, n_fitted1 = (int(v) for v in sizes.iloc[0])

    df1 = n_coeffs1 - n_coeffs0
    df2 = n_fitted1 - n_coeffs1
    if df1 <= 0 or df2 <= 0:
        raise DegreesOfFreedomError(f"non-positive degrees of freedom ({df1}, {df2})")

    return DegreesOfFreedom(
        dataset=dataset,
        s0_sq=1.0,
        df1=float(df1),
        df2=float(df2),
        n_proteins=len(records),
        method="theoretical",
    )


def estimate_dof(
    rss_table: pd.DataFrame, method: str = "empirical"
) -> tuple[dict[str, DegreesOfFreedom], dict[str, str]]:
    """Estimate the F-distribution parameters of every dataset in a complete RSS table.

    Args:
        rss_table: RSS comparison records of all proteins, with the ``applicable`` flag.
        method: "empirical" (fitted chi-squared distributions) or "theoretical".

    Returns:
        Tuple of the parameters per dataset and, for every dataset where estimation failed,
        the reason. Failed datasets get no parameters and must not be tested.
    """
    if method not in DOF_METHODS:
        raise ValueError(f"method must be one of {DOF_METHODS}, got '{method}'")
    estimator = estimate_empirical_dof if method == "empirical" else estimate_theoretical_dof

    dof: dict[str, DegreesOfFreedom] = {}
    unavailable: dict[str, str] = {}
    for dataset in sorted(rss_table["dataset"].unique()):
        try:
            dof[dataset] = estimator(rss_table, dataset)
        except DegreesOfFreedomError as e:
            logger.warning("No degrees of freedom for dataset %s: %s", dataset, e)
            unavailable[dataset] = str(e)

    return dof, unavailable
