"""Null versus alternative model fits per protein.

The null model is one melting curve fitted to all of a protein's measurements. The
alternative model is one curve per experimental condition (compound concentration). The
difference of their residual sums of squares is the input to the F-test.

Proteins are independent of each other, so the per-protein fits can be spread over worker
processes. Results are collected in input order and every protein draws its random restarts
from its own generator, so the table does not depend on the number of workers.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict, dataclass, field
from functools import partial

import numpy as np
import pandas as pd

from nparc.models import RSSTable
from nparc.processing.sigmoid import (
    FitResult,
    SigmoidFitConfig,
    fit_sigmoid_with_retry,
    make_group_rng,
)
from nparc.utils.validation import validate_positive_int, validate_required_columns

logger = logging.getLogger(__name__)

DEFAULT_REPEATS_IF_NEG = 5
GROUP_COLUMN = "compound_concentration"
PROGRESS_INTERVAL = 500

RSS_TABLE_COLUMNS = list(RSSTable.to_schema().columns)
FIT_INPUT_COLUMNS = ["dataset", "protein_id", "temperature", "rel_abundance", GROUP_COLUMN]


@dataclass(frozen=True)
class ModelComparison:
    """Null and alternative fits of one protein.

    Attributes:
        null: Fit to all measurements.
        alternatives: One fit per condition, keyed by condition.
        repeats: Number of times the comparison was repeated because the alternative model
            fitted worse than the null model.
    """

    null: FitResult
    alternatives: dict[object, FitResult] = field(default_factory=dict)
    repeats: int = 0

    @property
    def rss0(self) -> float:
        return self.null.rss

    @property
    def rss1(self) -> float:
        converged = [fit.rss for fit in self.alternatives.values() if fit.converged]
        if not converged:
            return np.nan
        return float(np.sum(converged))

    @property
    def rss_diff(self) -> float:
        return self.rss0 - self.rss1

    @property
    def n_fitted0(self) -> int:
        return self.null.n_fitted

    @property
    def n_fitted1(self) -> int:
        return sum(fit.n_fitted for fit in self.alternatives.values())

    @property
    def n_coeffs1(self) -> int:
        return sum(fit.n_coeffs for fit in self.alternatives.values())

    @property
    def conv0(self) -> bool:
        return self.null.converged

    @property
    def conv1(self) -> bool:
        return bool(self.alternatives) and all(f.converged for f in self.alternatives.values())


@dataclass(frozen=True)
class RSSComparison:
    """RSS comparison record of one protein in one dataset."""

    dataset: str
    protein_id: str
    rss0: float
    rss1: float
    n_fitted0: int
    n_fitted1: int
    n_coeffs0: int
    n_coeffs1: int
    n_groups: int
    conv0: bool
    conv1: bool
    repeats: int

    @property
    def rss_diff(self) -> float:
        return self.rss0 - self.rss1

    @classmethod
    def from_comparison(
        cls, dataset: str, protein_id: str, comparison: ModelComparison
    ) -> "RSSComparison":
        return cls(
            dataset=dataset,
            protein_id=protein_id,
            rss0=comparison.rss0,
            rss1=comparison.rss1,
            n_fitted0=comparison.n_fitted0,
            n_fitted1=comparison.n_fitted1,
            n_coeffs0=comparison.null.n_coeffs,
            n_coeffs1=comparison.n_coeffs1,
            n_groups=len(comparison.alternatives),
            conv0=comparison.conv0,
            conv1=comparison.conv1,
            repeats=comparison.repeats,
        )

    def to_record(self) -> dict[str, object]:
        record = asdict(self)
        record["rss_diff"] = self.rss_diff
        return record


def _fit_models(
    t: np.ndarray,
    y: np.ndarray,
    groups: np.ndarray,
    config: SigmoidFitConfig,
    rng: np.random.Generator,
    always_permute: bool,
) -> tuple[FitResult, dict[object, FitResult]]:
    null = fit_sigmoid_with_retry(t, y, config, rng, always_permute=always_permute)
    alternatives = {}
    for group in pd.unique(groups):
        mask = groups == group
        alternatives[group] = fit_sigmoid_with_retry(
            t[mask], y[mask], config, rng, always_permute=always_permute
        )
    return null, alternatives


def compare_models(
    temperature: np.ndarray,
    rel_abundance: np.ndarray,
    groups: np.ndarray,
    config: SigmoidFitConfig | None = None,
    rng: np.random.Generator | None = None,
    repeats_if_neg: int = DEFAULT_REPEATS_IF_NEG,
) -> ModelComparison:
    """Fit the null and alternative models of one protein.

    The alternative model has more parameters than the null model and should never fit
    worse. When it does, the optimiser got stuck in a local minimum, and the whole
    comparison, null fit included, is repeated from randomly rescaled starting values. At
    most ``repeats_if_neg`` repeats are made; the last comparison is returned even if the
    RSS difference is still negative.

    Args:
        temperature: Temperature of every measurement.
        rel_abundance: Relative abundance of every measurement; NaN for missing values.
        groups: Condition label of every measurement. One alternative curve is fitted per
            distinct label.
        config: Single-curve fit settings. Uses defaults if None.
        rng: Source of random restarts. A fresh unseeded generator if None.
        repeats_if_neg: Maximum number of repeats on a negative RSS difference.

    Returns:
        ModelComparison with the fits of the last round.
    """
    if config is None:
        config = SigmoidFitConfig()
    if rng is None:
        rng = np.random.default_rng()
    repeats_if_neg = validate_positive_int(repeats_if_neg, "repeats_if_neg", allow_zero=True)

    t = np.asarray(temperature, dtype=float)
    y = np.asarray(rel_abundance, dtype=float)
    g = np.asarray(groups)
    if not len(t) == len(y) == len(g):
        raise ValueError("temperature, rel_abundance and groups must have the same length")

    null, alternatives = _fit_models(t, y, g, config, rng, always_permute=False)
    comparison = ModelComparison(null=null, alternatives=alternatives, repeats=0)

    while comparison.rss_diff < 0 and comparison.repeats < repeats_if_neg:
        repeats = comparison.repeats + 1
        logger.debug(
            "Alternative model fits worse than null (RSS difference %.3g), repeat %d",
            comparison.rss_diff,
            repeats,
        )
        null, alternatives = _fit_models(t, y, g, config, rng, always_permute=True)
        comparison = ModelComparison(null=null, alternatives=alternatives, repeats=repeats)

    return comparison


def get_protein_key(protein_data: pd.DataFrame) -> tuple[str, str]:
    """(dataset, protein_id) of a table holding the rows of a single protein.

    Raises:
        ValueError: If the rows belong to more than one protein or dataset.
    """
    for col in ("dataset", "protein_id"):
        if (n_unique := protein_data[col].nunique()) != 1:
            raise ValueError(f"Data must contain exactly one {col}, but found {n_unique}")

    return str(protein_data["dataset"].iloc[0]), str(protein_data["protein_id"].iloc[0])


def fit_protein_models(
    protein_data: pd.DataFrame,
    config: SigmoidFitConfig | None = None,
    repeats_if_neg: int = DEFAULT_REPEATS_IF_NEG,
    seed: int | None = None,
) -> ModelComparison:
    """Null and alternative fits for the rows of a single protein in a single dataset.

    Rows are put in a fixed order before fitting, and the random restarts are seeded from
    the seed, dataset and protein id, so the fits do not depend on the input row order.
    """
    dataset, protein_id = get_protein_key(protein_data)

    sort_columns = [GROUP_COLUMN, "temperature"]
    if "replicate" in protein_data.columns:
        sort_columns.append("replicate")
    ordered = protein_data.sort_values(sort_columns, kind="mergesort").reset_index(drop=True)

    return compare_models(
        ordered["temperature"].to_numpy(),
        ordered["rel_abundance"].to_numpy(),
        ordered[GROUP_COLUMN].to_numpy(),
        config=config,
        rng=make_group_rng(seed, dataset, protein_id),
        repeats_if_neg=repeats_if_neg,
    )


def fit_protein(
    protein_data: pd.DataFrame,
    config: SigmoidFitConfig | None = None,
    repeats_if_neg: int = DEFAULT_REPEATS_IF_NEG,
    seed: int | None = None,
) -> RSSComparison:
    """RSS comparison record for the rows of a single protein in a single dataset."""
    dataset, protein_id = get_protein_key(protein_data)
    comparison = fit_protein_models(protein_data, config, repeats_if_neg, seed)
    if not comparison.conv0 or not comparison.conv1:
        logger.warning("Fits did not converge for protein %s in dataset %s", protein_id, dataset)

    return RSSComparison.from_comparison(dataset, protein_id, comparison)


def flag_applicable(rss_table: pd.DataFrame) -> pd.DataFrame:
    """Mark the records that can be used for testing.

    A record is applicable when both models were fitted to the maximum number of points seen
    in its dataset and the RSS difference is not negative.
    """
    table = rss_table.copy()
    by_dataset = table.groupby("dataset")
    full_null = table["n_fitted0"] == by_dataset["n_fitted0"].transform("max")
    full_alternative = table["n_fitted1"] == by_dataset["n_fitted1"].transform("max")
    table["applicable"] = (
        full_null & full_alternative & (table["n_fitted0"] > 0) & (table["rss_diff"] >= 0)
    )

    return table


def compute_rss_table(
    data: pd.DataFrame,
    config: SigmoidFitConfig | None = None,
    repeats_if_neg: int = DEFAULT_REPEATS_IF_NEG,
    seed: int | None = None,
    n_workers: int = 1,
) -> pd.DataFrame:
    """Fit null and alternative models for every protein of every dataset.

    Args:
        data: Tidy TPP table, usually filtered with ``filter_tidy_data``.
        config: Single-curve fit settings. Uses defaults if None.
        repeats_if_neg: Maximum number of repeats on a negative RSS difference.
        seed: Seed for the random restarts. Unseeded if None.
        n_workers: Number of worker processes. 1 fits in the calling process.

    Returns:
        pd.DataFrame with one row per (dataset, protein_id), ordered by both, with the
        columns of ``nparc.models.RSSTable``.
    """
    validate_required_columns(data, FIT_INPUT_COLUMNS)
    n_workers = validate_positive_int(n_workers, "n_workers")

    protein_groups = [group for _, group in data.groupby(["dataset", "protein_id"], sort=True)]
    fit_one = partial(fit_protein, config=config, repeats_if_neg=repeats_if_neg, seed=seed)
    logger.info("Fitting null and alternative models for %d proteins", len(protein_groups))

    if n_workers == 1:
        records = []
        for i, group in enumerate(protein_groups, start=1):
            records.append(fit_one(group))
            if i % PROGRESS_INTERVAL == 0:
                logger.info("  Fitted %d of %d proteins", i, len(protein_groups))
    else:
        logger.info("  Using %d parallel workers", n_workers)
        chunksize = max(1, len(protein_groups) // (4 * n_workers))
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            records = list(executor.map(fit_one, protein_groups, chunksize=chunksize))

    table = pd.DataFrame([r.to_record() for r in records], columns=RSS_TABLE_COLUMNS[:-1])
    table = flag_applicable(table)

    return table.loc[:, RSS_TABLE_COLUMNS]
