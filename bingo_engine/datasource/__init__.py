from .base import RoundDataSource
from .http_api import HttpJsonDataSource

__all__ = [
    "RoundDataSource",
    "HttpJsonDataSource",
]
