from typing import Dict, Optional, Tuple

from univ3_swap_monitor.core.models import SwapEvent

# ---------------------------------------------------------------------
# Pool metadata helpers
# ---------------------------------------------------------------------

POOL_METADATA: Dict[str, Dict[str, object]] = {
    "USDC-WETH": {
        "addresses": [
            "0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640",
            "0xe0554a476a092703abdb3ef35c80e0d76d32939f",
            "0x8ad599c3a0ff1de082011efddc58f1908eb6e6d8",
        ],
        "tokens": ("usdc", "weth"),
    },
    "DAI-USDC": {
        "addresses": [
            "0x5777d92f208679db4b9778590fa3cab3ac9e2168",
            "0x6c6bc977e13df9b0de53b251522280bb72383700",
        ],
        "tokens": ("dai", "usdc"),
    },
    "USDC-USDT": {
        "addresses": [
            "0x3416cf6c708da44db2624d63ea0aaef7113527c6",
            "0x7858e59e0c01ea06df3af3d20ac7b0003275d4bf",
        ],
        "tokens": ("usdc", "usdt"),
    },
    "WBTC-USDC": {
        "addresses": [
            "0x9a772018fbd77fcd2d25657e5c547baff3fd7d16",
            "0x99ac8ca7087fa4a2a1fb6357269965a2014abc35",
        ],
        "tokens": ("wbtc", "usdc"),
    },
    "WBTC-WETH": {
        "addresses": [
            "0x4585fe77225b41b697c938b018e2ac67ac5a20c0",
            "0xcbcdf9626bc03e24f779434178a73a0b4bad62ed",
        ],
        "tokens": ("wbtc", "weth"),
    },
    "WETH-USDT": {
        "addresses": [
            "0x11b815efb8f581194ae79006d24e0d814b7697f6",
            "0x4e68ccd3e89f51c3074ca5072bbac773960dfa36",
            "0xc7bbec68d12a0d1830360f8ec58fa599ba1b0e9b",
        ],
        "tokens": ("weth", "usdt"),
    },
    "wstETH-WETH": {
        "addresses": [
            "0x109830a1aaad605bbf02a9dfa7b0b92ec2fb7daa",
        ],
        "tokens": ("wsteth", "weth"),
    },
}

TOKEN_DECIMALS = {
    "usdc": 6,
    "usdt": 6,
    "dai": 18,
    "weth": 18,
    "wbtc": 8,
    "wsteth": 18,
}


def normalize_address(address: Optional[str]) -> Optional[str]:
    if address is None:
        return None
    return address.strip().lower()


def find_pair_name(pool_address: str) -> Optional[str]:
    normalized = normalize_address(pool_address)
    for name, meta in POOL_METADATA.items():
        addresses = [normalize_address(addr) for addr in meta["addresses"]]
        if normalized in addresses:
            return name
    return None


def token_decimals_for_pair(pair_name: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    if not pair_name:
        return (None, None)
    meta = POOL_METADATA.get(pair_name)
    if not meta:
        return (None, None)
    token0, token1 = meta.get("tokens", (None, None))
    if token0 is None or token1 is None:
        return (None, None)
    return (TOKEN_DECIMALS.get(token0), TOKEN_DECIMALS.get(token1))


def sqrtPriceX96_to_price(sqrtPrice_X96, decimals0, decimals1, reverse=True):
    '''Function to convert sqrt(price) to price'''
    price = (sqrtPrice_X96/2**96)**2 / (10 ** (decimals1 - decimals0))
    if reverse:
        return 1 / price
    else:
        return price


def format_swap(event: SwapEvent, decimals: Tuple[Optional[int], Optional[int]] = (None, None)) -> str:
    """One console line per stored swap; appends a price when the pool decimals are known."""
    line = (
        f"new | block: {event.block_number}, log_index: {event.log_index}, "
        f"tx_hash: {event.tx_hash}, sender: {event.sender}, receiver: {event.receiver}, "
        f"amount0: {event.amount0}, amount1: {event.amount1}, sqrt_price: {event.sqrt_price}, "
        f"liquidity: {event.liquidity}, tick: {event.tick}"
    )
    dec0, dec1 = decimals
    sqrt_price = int(event.sqrt_price)
    if dec0 is not None and dec1 is not None and sqrt_price:
        line += f", price: {sqrtPriceX96_to_price(sqrt_price, dec0, dec1):.6f}"
    return line
