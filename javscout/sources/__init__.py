from .base import BaseSource
from .javdb import JavDbSource, SearchOutcome
from .javdb_parser import JavDbHtmlParser

__all__ = [
    "BaseSource",
    "JavDbHtmlParser",
    "JavDbSource",
    "SearchOutcome",
]
