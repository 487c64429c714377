import pandera as pa
from pandera.typing import Series


class RSSTable(pa.DataFrameModel):
    dataset: Series[str] = pa.Field()
    protein_id: Series[str] = pa.Field()
    rss0: Series[float] = pa.Field(ge=0, nullable=True)
    rss1: Series[float] = pa.Field(ge=0, nullable=True)
    rss_diff: Series[float] = pa.Field(nullable=True)
    n_fitted0: Series[int] = pa.Field(ge=0)
    n_fitted1: Series[int] = pa.Field(ge=0)
    n_coeffs0: Series[int] = pa.Field(ge=0)
    n_coeffs1: Series[int] = pa.Field(ge=0)
    n_groups: Series[int] = pa.Field(ge=1)
    conv0: Series[bool] = pa.Field()
    conv1: Series[bool] = pa.Field()
    repeats: Series[int] = pa.Field(ge=0)
    applicable: Series[bool] = pa.Field()

    class Config:
        coerce = True
