"""End-to-end NPARC analysis.

The analysis runs in two phases with a barrier in between:

1. Map: every protein of every dataset is fitted independently (null and alternative
   models). This phase is the expensive one; its result, the RSS comparison table, can be
   cached on disk and reused.
2. Reduce: once the table is complete, degrees of freedom are estimated per dataset and
   every applicable protein is tested against its dataset's F-distribution.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd

from nparc.parsers.rss_table_parser import RSSTableParser
from nparc.processing.dof import DOF_METHODS, DegreesOfFreedom, estimate_dof
from nparc.processing.filtering import DEFAULT_MIN_UNIQUE_PEPTIDES, filter_tidy_data
from nparc.processing.hypothesis_test import (
    call_hits,
    run_f_tests,
    summarize_results,
)
from nparc.processing.rss import (
    DEFAULT_REPEATS_IF_NEG,
    compute_rss_table,
    fit_protein_models,
)
from nparc.processing.sigmoid import SigmoidFitConfig, get_aumc
from nparc.utils.cache import write_rss_table
from nparc.utils.validation import validate_alpha, validate_positive_int

logger = logging.getLogger(__name__)

CURVE_METRIC_COLUMNS = [
    "dataset",
    "protein_id",
    "group",
    "plateau",
    "a",
    "b",
    "melting_point",
    "aumc",
    "rss",
    "resid_sd",
    "n_fitted",
    "n_coeffs",
    "converged",
]


@dataclass(frozen=True)
class NPARCConfig:
    """Settings of an NPARC analysis.

    Attributes:
        fit: Settings for fitting single melting curves.
        repeats_if_neg: Maximum number of times a protein's null and alternative fits are
            repeated while the alternative model fits worse than the null model.
        seed: Seed for the random restarts. Results are only reproducible with a seed.
        n_workers: Number of worker processes for the per-protein fits.
        dof_method: "empirical" to estimate the degrees of freedom from the data,
            "theoretical" to derive them from the model sizes.
        alpha: Threshold on Benjamini-Hochberg adjusted p-values for calling hits.
        filter_data: Apply ``filter_tidy_data`` before fitting.
        min_unique_peptides: Minimum unique peptides per row when filtering.
    """

    fit: SigmoidFitConfig = field(default_factory=SigmoidFitConfig)
    repeats_if_neg: int = DEFAULT_REPEATS_IF_NEG
    seed: int | None = None
    n_workers: int = 1
    dof_method: str = "empirical"
    alpha: float = 0.01
    filter_data: bool = True
    min_unique_peptides: int = DEFAULT_MIN_UNIQUE_PEPTIDES

    def __post_init__(self) -> None:
        validate_positive_int(self.repeats_if_neg, "repeats_if_neg", allow_zero=True)
        validate_positive_int(self.n_workers, "n_workers")
        if self.seed is not None:
            validate_positive_int(self.seed, "seed", allow_zero=True)
        if self.dof_method not in DOF_METHODS:
            raise ValueError(f"dof_method must be one of {DOF_METHODS}, got '{self.dof_method}'")
        validate_alpha(self.alpha)


@dataclass
class NPARCResult:
    """Everything an NPARC analysis produces.

    Attributes:
        rss_table: RSS comparison record of every fitted protein.
        dof: F-distribution parameters per dataset.
        unavailable: Datasets that could not be tested, with the reason.
        results: Test result of every tested protein.
        hits: Significant proteins per dataset, sorted by descending F-statistic.
        summary: Per-dataset counts of fitted, applicable, tested and significant proteins.
    """

    rss_table: pd.DataFrame
    dof: dict[str, DegreesOfFreedom]
    unavailable: dict[str, str]
    results: pd.DataFrame
    hits: dict[str, pd.DataFrame]
    summary: pd.DataFrame


def load_or_compute_rss_table(
    data: pd.DataFrame, config: NPARCConfig, cache_path: Path | None = None
) -> pd.DataFrame:
    """RSS comparison table, read from cache_path if it exists and written there otherwise.

    The cache does not record the settings it was computed with. A cached table is reused as
    is, even if fit settings, seed or repeats_if_neg have changed since.
    """
    if cache_path is not None and Path(cache_path).exists():
        logger.info(
            "Reading cached RSS comparison table from %s; fit settings, seed and "
            "repeats_if_neg of the current configuration are not applied to it",
            cache_path,
        )
        return RSSTableParser(Path(cache_path)).parse()

    rss_table = compute_rss_table(
        data,
        config=config.fit,
        repeats_if_neg=config.repeats_if_neg,
        seed=config.seed,
        n_workers=config.n_workers,
    )
    if cache_path is not None:
        write_rss_table(rss_table, Path(cache_path))

    return rss_table


def run_nparc(
    data: pd.DataFrame,
    config: NPARCConfig | None = None,
    cache_path: Path | None = None,
) -> NPARCResult:
    """Run the complete NPARC analysis on a tidy TPP table.

    Args:
        data: Tidy TPP table with one or more datasets.
        config: Analysis settings. Uses defaults if None.
        cache_path: Optional ``.csv``/``.tsv`` file for the RSS comparison table. An existing
            file is used instead of fitting, whatever settings it was computed with, so
            delete it after changing ``fit``, ``seed`` or ``repeats_if_neg``. Otherwise the
            fitted table is written to it.

    Returns:
        NPARCResult. Datasets whose degrees of freedom could not be estimated are listed in
        ``unavailable`` and have no results.
    """
    if config is None:
        config = NPARCConfig()

    if config.filter_data:
        data = filter_tidy_data(data, min_unique_peptides=config.min_unique_peptides)

    rss_table = load_or_compute_rss_table(data, config, cache_path)

    dof, unavailable = estimate_dof(rss_table, method=config.dof_method)
    results = run_f_tests(rss_table, dof)
    hits = call_hits(results, alpha=config.alpha)
    summary = summarize_results(rss_table, results, alpha=config.alpha)

    return NPARCResult(
        rss_table=rss_table,
        dof=dof,
        unavailable=unavailable,
        results=results,
        hits=hits,
        summary=summary,
    )


def compute_curve_metrics(
    data: pd.DataFrame,
    config: NPARCConfig | None = None,
    proteins: list[str] | None = None,
) -> pd.DataFrame:
    """Fitted parameters and summaries of the null and alternative curves of each protein.

    The data are filtered and the fits repeated with the same settings as ``run_nparc``, so
    with a seed they match the fits behind the RSS comparison table of the same data.

    Args:
        data: Tidy TPP table.
        config: Analysis settings. Uses defaults if None.
        proteins: Restrict to these protein ids. All proteins if None.

    Returns:
        pd.DataFrame with one row per (dataset, protein_id, group), where group is "null" or
        the compound concentration of an alternative curve.
    """
    if config is None:
        config = NPARCConfig()
    # filter before subsetting, complete curves are judged against the whole dataset
    if config.filter_data:
        data = filter_tidy_data(data, min_unique_peptides=config.min_unique_peptides)
    if proteins is not None:
        data = data.loc[data["protein_id"].isin(proteins)]

    rows = []
    for (dataset, protein_id), protein_data in data.groupby(["dataset", "protein_id"], sort=True):
        comparison = fit_protein_models(
            protein_data, config.fit, config.repeats_if_neg, config.seed
        )
        t_min = float(protein_data["temperature"].min())
        t_max = float(protein_data["temperature"].max())

        fits = [("null", comparison.null)] + list(comparison.alternatives.items())
        for group, fit in fits:
            params = fit.params
            rows.append(
                {
                    "dataset": dataset,
                    "protein_id": protein_id,
                    "group": str(group),
                    "plateau": params.plateau if params else np.nan,
                    "a": params.a if params else np.nan,
                    "b": params.b if params else np.nan,
                    "melting_point": fit.melting_point,
                    "aumc": get_aumc(params, t_min, t_max) if params else np.nan,
                    "rss": fit.rss,
                    "resid_sd": fit.resid_sd,
                    "n_fitted": fit.n_fitted,
                    "n_coeffs": fit.n_coeffs,
                    "converged": fit.converged,
                }
            )

    return pd.DataFrame(rows, columns=CURVE_METRIC_COLUMNS)
