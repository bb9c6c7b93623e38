"""Known SPL tokens and amount conversions."""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Dict, Optional

from private_dca.errors import ValidationError

SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    mint: str
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.mint == SOL_MINT


TOKENS: Dict[str, TokenInfo] = {
    "SOL": TokenInfo("SOL", SOL_MINT, 9),
    "USDC": TokenInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
    "USDT": TokenInfo("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
    "BONK": TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5),
    "WIF": TokenInfo("WIF", "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", 6),
    "JUP": TokenInfo("JUP", "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", 6),
    "RAY": TokenInfo("RAY", "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R", 6),
    "ORCA": TokenInfo("ORCA", "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE", 6),
}

_BY_MINT = {info.mint: info for info in TOKENS.values()}


def is_known_token(symbol: str) -> bool:
    return symbol.upper() in TOKENS


def get_token(symbol: str) -> TokenInfo:
    info = TOKENS.get(symbol.upper())
    if info is None:
        raise ValidationError(
            f"Unknown token: {symbol}. Supported: {', '.join(TOKENS)}",
            {"token": symbol},
        )
    return info


def token_by_mint(mint: str) -> Optional[TokenInfo]:
    return _BY_MINT.get(str(mint))


def to_raw_amount(amount: float, decimals: int) -> int:
    """Convert a human amount to base units, rounding down."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_raw_amount(raw: int, decimals: int) -> float:
    return float(Decimal(int(raw)) / (Decimal(10) ** decimals))


def sol_to_lamports(sol: float) -> int:
    return to_raw_amount(sol, 9)


def lamports_to_sol(lamports: int) -> float:
    return from_raw_amount(lamports, 9)
