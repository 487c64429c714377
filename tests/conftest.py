from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import pytest

from nparc.processing.sigmoid import melting_curve

TEMPERATURES = [37.0, 41.0, 44.0, 47.0, 50.0, 53.0, 56.0, 59.0, 63.0, 67.0]
CONCENTRATIONS = [0.0, 20.0]
REPLICATES = [1, 2]
NOISE_SD = 0.03
# b of every synthetic curve; a = melting point * (b - log(0.95 / 0.45 - 1)) for plateau 0.05
CURVE_B = 20.0
CURVE_PLATEAU = 0.05
STABILISED_PROTEINS = ["STAB1", "STAB2", "STAB3"]
TM_SHIFT = 6.0


def _a_for_melting_point(tm: float) -> float:
    return tm * (CURVE_B - np.log((1 - CURVE_PLATEAU) / (0.5 - CURVE_PLATEAU) - 1))


def make_tpp_data(
    n_null_proteins: int = 40,
    stabilised: list[str] | None = None,
    dataset: str = "ds1",
    seed: int = 0,
) -> pd.DataFrame:
    """Tidy TPP table of synthetic melting curves.

    Every protein gets a random vehicle melting point between 45 and 58 °C. Stabilised
    proteins melt TM_SHIFT degrees higher at the non-zero concentration; all other proteins
    melt identically at both concentrations.
    """
    if stabilised is None:
        stabilised = STABILISED_PROTEINS
    rng = np.random.default_rng(seed)
    proteins = [f"P{i:03d}" for i in range(n_null_proteins)] + list(stabilised)

    rows = []
    for protein in proteins:
        tm = rng.uniform(45, 58)
        for concentration in CONCENTRATIONS:
            shift = TM_SHIFT if protein in stabilised and concentration > 0 else 0.0
            a = _a_for_melting_point(tm + shift)
            for replicate in REPLICATES:
                y = melting_curve(np.array(TEMPERATURES), CURVE_PLATEAU, a, CURVE_B)
                y = y + rng.normal(0, NOISE_SD, len(TEMPERATURES))
                for temperature, value in zip(TEMPERATURES, y):
                    rows.append(
                        {
                            "dataset": dataset,
                            "protein_id": protein,
                            "temperature": temperature,
                            "rel_abundance": value,
                            "compound_concentration": concentration,
                            "replicate": replicate,
                            "unique_peptide_matches": 3.0,
                        }
                    )

    return pd.DataFrame(rows)


@pytest.fixture
def sample_temperatures() -> np.ndarray:
    """Temperatures of a typical TPP experiment."""
    return np.array(TEMPERATURES)


@pytest.fixture
def sample_curve(sample_temperatures: np.ndarray) -> np.ndarray:
    """Noisy melting curve with plateau 0.05 and a melting point near 50 °C."""
    rng = np.random.default_rng(1)
    y = melting_curve(sample_temperatures, CURVE_PLATEAU, _a_for_melting_point(50.0), CURVE_B)
    return y + rng.normal(0, 0.01, len(sample_temperatures))


@pytest.fixture
def sample_tpp_data() -> pd.DataFrame:
    """Tidy TPP table with 40 unaffected and 3 stabilised proteins in one dataset."""
    return make_tpp_data()


@pytest.fixture
def small_tpp_data() -> pd.DataFrame:
    """Tidy TPP table with two unaffected and one stabilised protein."""
    return make_tpp_data(n_null_proteins=2, stabilised=["STAB1"])


@pytest.fixture
def two_dataset_tpp_data() -> pd.DataFrame:
    """Two datasets, the second with a single protein so its degrees of freedom fail."""
    first = make_tpp_data(dataset="ds1")
    second = make_tpp_data(n_null_proteins=1, stabilised=[], dataset="ds2", seed=1)
    return pd.concat([first, second], ignore_index=True)


@pytest.fixture
def sample_rss_table() -> pd.DataFrame:
    """Hand-made RSS comparison table covering applicable and excluded records."""
    return pd.DataFrame(
        {
            "dataset": ["ds1", "ds1", "ds1", "ds1", "ds2"],
            "protein_id": ["A", "B", "C", "D", "A"],
            "rss0": [1.0, 2.0, 0.5, np.nan, 1.0],
            "rss1": [0.5, 0.4, 0.6, np.nan, 1 / 3],
            "rss_diff": [0.5, 1.6, -0.1, np.nan, 1 - 1 / 3],
            "n_fitted0": [40, 40, 40, 0, 40],
            "n_fitted1": [40, 40, 40, 0, 40],
            "n_coeffs0": [3, 3, 3, 3, 3],
            "n_coeffs1": [6, 6, 6, 6, 6],
            "n_groups": [2, 2, 2, 2, 2],
            "conv0": [True, True, True, False, True],
            "conv1": [True, True, True, False, True],
            "repeats": [0, 0, 5, 0, 1],
            "applicable": [True, True, False, False, True],
        }
    )


@pytest.fixture
def mock_file_path(mocker) -> Any:
    """Mock file path for testing parsers."""
    return mocker.Mock(spec=Path)


@pytest.fixture
def stabilised_proteins() -> list[str]:
    """Proteins of ``sample_tpp_data`` that melt higher with compound."""
    return list(STABILISED_PROTEINS)


@pytest.fixture(scope="module")
def sample_nparc_result():
    """Seeded NPARC analysis of ``sample_tpp_data``, shared by a test module."""
    from nparc.processing.pipeline import NPARCConfig, run_nparc

    return run_nparc(make_tpp_data(), NPARCConfig(seed=42))
