import pandera as pa
from pandera.typing import Series


class TPPTidyInput(pa.DataFrameModel):
    dataset: Series[str] = pa.Field()
    protein_id: Series[str] = pa.Field()
    temperature: Series[float] = pa.Field(gt=0, le=100)
    rel_abundance: Series[float] = pa.Field(nullable=True)
    compound_concentration: Series[float] = pa.Field(ge=0)
    replicate: Series[int] = pa.Field(ge=1)
    # not every search engine reports peptide counts for every row
    unique_peptide_matches: Series[float] = pa.Field(ge=0, nullable=True)

    class Config:
        coerce = True
