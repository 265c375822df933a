from .base import TOKEN_DECIMALS, FundingBackend, format_units, to_base_units
from .http_api import HttpFundingBackend
from .web3_backend import Web3FundingBackend

__all__ = [
    "TOKEN_DECIMALS",
    "FundingBackend",
    "HttpFundingBackend",
    "Web3FundingBackend",
    "format_units",
    "to_base_units",
]
