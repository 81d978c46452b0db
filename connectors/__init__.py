"""Connectors for JSON-RPC nodes, the price API and the aggregation backend."""

from .backend_api import BackendClient, BackendTokenBalance
from .price_api import ExternalPriceClient
from .rpc_client import RpcClient, RpcRequest

__all__ = [
    "BackendClient",
    "BackendTokenBalance",
    "ExternalPriceClient",
    "RpcClient",
    "RpcRequest",
]
