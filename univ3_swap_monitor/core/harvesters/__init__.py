"""
Runnable harvesters for Uniswap v3 pools.
"""

from univ3_swap_monitor.core.harvesters.rpc_harvester import IngestionLoop, main as rpc_main

__all__ = [
    "IngestionLoop",
    "rpc_main",
]
