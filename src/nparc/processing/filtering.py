import logging

import pandas as pd

from nparc.utils.validation import validate_required_columns

logger = logging.getLogger(__name__)

DEFAULT_DECOY_MARKER = "##"
DEFAULT_MIN_UNIQUE_PEPTIDES = 1

FILTER_COLUMNS = ["dataset", "protein_id", "rel_abundance", "unique_peptide_matches"]


def _log_step(step: str, before: pd.DataFrame, after: pd.DataFrame) -> None:
    logger.info(
        "%s: removed %d rows, %d proteins remain",
        step,
        len(before) - len(after),
        after.groupby(["dataset", "protein_id"]).ngroups,
    )


def remove_decoys(data: pd.DataFrame, marker: str = DEFAULT_DECOY_MARKER) -> pd.DataFrame:
    """Drop decoy and contaminant identifications, whose protein ids contain the marker."""
    is_decoy = data["protein_id"].astype(str).str.contains(marker, regex=False)
    return data.loc[~is_decoy]


def remove_low_confidence(
    data: pd.DataFrame, min_unique_peptides: int = DEFAULT_MIN_UNIQUE_PEPTIDES
) -> pd.DataFrame:
    """Drop rows quantified with fewer than min_unique_peptides unique peptides."""
    return data.loc[data["unique_peptide_matches"] >= min_unique_peptides]


def remove_missing(data: pd.DataFrame) -> pd.DataFrame:
    """Drop rows without a relative abundance."""
    return data.loc[data["rel_abundance"].notna()]


def keep_complete_curves(data: pd.DataFrame) -> pd.DataFrame:
    """Keep proteins measured at every temperature, replicate and concentration of their dataset.

    A protein's curve counts as complete when it has as many rows as the most completely
    measured protein of the same dataset.
    """
    n_rows = data.groupby(["dataset", "protein_id"])["protein_id"].transform("size")
    max_rows = n_rows.groupby(data["dataset"]).transform("max")
    return data.loc[n_rows == max_rows]


def filter_tidy_data(
    data: pd.DataFrame,
    min_unique_peptides: int = DEFAULT_MIN_UNIQUE_PEPTIDES,
    decoy_marker: str = DEFAULT_DECOY_MARKER,
) -> pd.DataFrame:
    """Prepare a tidy TPP table for curve fitting.

    Removes, in this order, decoys, low-confidence identifications, missing values and
    proteins with incomplete melting curves.

    Args:
        data: Tidy TPP table, e.g. from ``TidyTableParser``
        min_unique_peptides: Minimum number of unique peptides per row
        decoy_marker: Substring marking decoy protein ids

    Returns:
        pd.DataFrame: Filtered copy of data with a fresh index
    """
    validate_required_columns(data, FILTER_COLUMNS)

    filtered = data
    steps = [
        ("Decoys", lambda df: remove_decoys(df, decoy_marker)),
        (
            "Low-confidence identifications",
            lambda df: remove_low_confidence(df, min_unique_peptides),
        ),
        ("Missing values", remove_missing),
        ("Incomplete melting curves", keep_complete_curves),
    ]
    for step, apply_filter in steps:
        before = filtered
        filtered = apply_filter(filtered)
        _log_step(step, before, filtered)

    return filtered.reset_index(drop=True).copy()


def count_proteins(data: pd.DataFrame) -> pd.Series:
    """Number of distinct proteins per dataset."""
    return data.groupby("dataset")["protein_id"].nunique()
