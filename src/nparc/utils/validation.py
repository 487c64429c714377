import numbers
from collections.abc import Iterable

import pandas as pd


def validate_alpha(alpha: float) -> float:
    """Validate a significance threshold.

    Args:
        alpha: Threshold on adjusted p-values

    Returns:
        float: The validated threshold

    Raises:
        ValueError: If alpha is not in (0, 1]
    """
    if not 0 < alpha <= 1:
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    return float(alpha)


def validate_positive_int(value: int, name: str, allow_zero: bool = False) -> int:
    """Validate a count-like setting such as a retry budget or a worker count."""
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    lower = 0 if allow_zero else 1
    if value < lower:
        raise ValueError(f"{name} must be >= {lower}, got {value}")
    return int(value)


def validate_required_columns(df: pd.DataFrame, columns: Iterable[str]) -> None:
    """Raise a ValueError naming every required column missing from df."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")
