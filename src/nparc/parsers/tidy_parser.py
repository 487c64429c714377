import logging
from pathlib import Path

import pandas as pd

from nparc.models import TPPTidyInput
from nparc.parsers.base_parser import BaseParser, infer_separator
from nparc.utils.validation import validate_required_columns

logger = logging.getLogger(__name__)

# column names used by the tidy tables published alongside the NPARC method
CAMEL_CASE_COLUMNS = {
    "uniqueID": "protein_id",
    "relAbundance": "rel_abundance",
    "compoundConcentration": "compound_concentration",
    "uniquePeptideMatches": "unique_peptide_matches",
}

# identifiers such as "001" must not be read as numbers
ID_DTYPES = {"dataset": str, "protein_id": str, "uniqueID": str}

REQUIRED_COLUMNS = [
    "dataset",
    "protein_id",
    "temperature",
    "rel_abundance",
    "compound_concentration",
    "replicate",
    "unique_peptide_matches",
]


class TidyTableParser(BaseParser):
    """Parse a tidy TPP table (one row per protein, temperature, replicate and concentration)."""

    def __init__(self, file_path: Path, sep: str | None = None):
        super().__init__(file_path)
        self.sep = sep

    def parse(self) -> pd.DataFrame:
        self._validate_path()
        raw = self._read_file()
        self._validate_raw_data(raw)
        processed = self._process_raw_data(raw)
        validated = self._validate_processed_data(processed)
        logger.info(
            "Read %d rows for %d proteins from %s",
            len(validated),
            validated["protein_id"].nunique(),
            self.file_path,
        )
        return validated

    def _read_file(self) -> pd.DataFrame:
        sep = self.sep if self.sep is not None else infer_separator(self.file_path)
        return pd.read_csv(self.file_path, sep=sep, dtype=ID_DTYPES)

    def _validate_raw_data(self, df: pd.DataFrame) -> None:
        validate_required_columns(df.rename(columns=CAMEL_CASE_COLUMNS), REQUIRED_COLUMNS)

    def _process_raw_data(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.rename(columns=CAMEL_CASE_COLUMNS)
        df = df.loc[:, REQUIRED_COLUMNS + [c for c in df.columns if c not in REQUIRED_COLUMNS]]
        df["dataset"] = df["dataset"].astype(str)
        df["protein_id"] = df["protein_id"].astype(str)

        return df

    def _validate_processed_data(self, df: pd.DataFrame) -> pd.DataFrame:
        return TPPTidyInput.validate(df)
