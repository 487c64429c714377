from nparc.utils.cache import write_rss_table
from nparc.utils.validation import (
    validate_alpha,
    validate_positive_int,
    validate_required_columns,
)

__all__ = [
    "validate_alpha",
    "validate_positive_int",
    "validate_required_columns",
    "write_rss_table",
]
