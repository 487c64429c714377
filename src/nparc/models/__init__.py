from nparc.models.rss_table import RSSTable
from nparc.models.tpp_input_model import TPPTidyInput

__all__ = ["RSSTable", "TPPTidyInput"]
