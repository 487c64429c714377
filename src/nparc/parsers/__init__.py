from nparc.parsers.base_parser import BaseParser
from nparc.parsers.rss_table_parser import RSSTableParser
from nparc.parsers.tidy_parser import TidyTableParser

__all__ = ["BaseParser", "RSSTableParser", "TidyTableParser"]
