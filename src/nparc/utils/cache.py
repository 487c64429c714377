import logging
from pathlib import Path

import pandas as pd

from nparc.models import RSSTable
from nparc.parsers.base_parser import infer_separator

logger = logging.getLogger(__name__)


def write_rss_table(rss_table: pd.DataFrame, path: Path) -> Path:
    """Write an RSS comparison table so that ``RSSTableParser`` reads back identical values.

    Floats are written with 17 significant digits, enough to round-trip any double.

    Args:
        rss_table: Table with the columns of ``nparc.models.RSSTable``
        path: Destination, ``.csv`` or ``.tsv``

    Returns:
        Path: The written path
    """
    path = Path(path)
    validated = RSSTable.validate(rss_table)
    columns = list(RSSTable.to_schema().columns)

    path.parent.mkdir(parents=True, exist_ok=True)
    validated.loc[:, columns].to_csv(
        path, sep=infer_separator(path), index=False, float_format="%.17g"
    )
    logger.info("Cached %d RSS comparison records to %s", len(validated), path)

    return path
