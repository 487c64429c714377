from pathlib import Path

import pandas as pd

from nparc.models import RSSTable
from nparc.parsers.base_parser import BaseParser, infer_separator
from nparc.utils.validation import validate_required_columns

RSS_TABLE_COLUMNS = list(RSSTable.to_schema().columns)


class RSSTableParser(BaseParser):
    """Read back an RSS comparison table written by ``nparc.utils.cache.write_rss_table``."""

    def __init__(self, file_path: Path):
        super().__init__(file_path)

    def parse(self) -> pd.DataFrame:
        self._validate_path()
        raw = self._read_file()
        self._validate_raw_data(raw)
        return self._validate_processed_data(self._process_raw_data(raw))

    def _read_file(self) -> pd.DataFrame:
        return pd.read_csv(
            self.file_path,
            sep=infer_separator(self.file_path),
            float_precision="round_trip",
            dtype={"dataset": str, "protein_id": str},
            keep_default_na=False,
            na_values=[""],
        )

    def _validate_raw_data(self, df: pd.DataFrame) -> None:
        validate_required_columns(df, RSS_TABLE_COLUMNS)

    def _process_raw_data(self, df: pd.DataFrame) -> pd.DataFrame:
        # object dtype means the booleans were not recognised while reading
        for col in ("conv0", "conv1", "applicable"):
            if df[col].dtype == object:
                df[col] = df[col].map({"True": True, "False": False})
        return df.loc[:, RSS_TABLE_COLUMNS]

    def _validate_processed_data(self, df: pd.DataFrame) -> pd.DataFrame:
        return RSSTable.validate(df)
