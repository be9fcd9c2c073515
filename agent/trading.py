"""
Trade execution contract used by the decision fallback.

The gateway never talks to a DEX itself. When the reasoning model decides to
BUY or SELL, the fallback hands the decision to a TradeExecutor, which quotes
and executes the swap and reports back a TradeResult:

    executed=True, tx_hash=...  →  [EXECUTED: TX <hash>]
    dry_run=True                →  [DRY RUN: Trade simulated only]
    otherwise                   →  [EXECUTION FAILED: <error>]

All swaps are quoted against USDC: BUY spends USDC on the token, SELL sells
the token for USDC, optionally through a hub token (`via`, usually WETH).
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

QUOTE_TOKEN = "USDC"


class TradeResult(BaseModel):
    executed: bool = False
    dry_run: bool = False
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@runtime_checkable
class TradeExecutor(Protocol):
    async def quote_and_execute(
        self,
        token: str,
        action: str,
        amount_usd: float,
        via: Optional[str] = None,
    ) -> TradeResult:
        ...


def swap_route(token: str, action: str, via: Optional[str] = None) -> Tuple[str, ...]:
    """
    Token path for a trade, e.g. ("USDC", "WETH", "BRETT") for a BUY via WETH.

    A hub equal to either end of the swap would make a degenerate two-leg
    route, so it is ignored and the trade goes direct.
    """
    action = action.upper()
    if action not in ("BUY", "SELL"):
        raise ValueError(f"Cannot route action {action!r}")
    token_in, token_out = (QUOTE_TOKEN, token) if action == "BUY" else (token, QUOTE_TOKEN)
    if via and via not in (token_in, token_out):
        return (token_in, via, token_out)
    return (token_in, token_out)


class DryRunTradeExecutor:
    """Logs the route it would take and reports a simulated trade."""

    def __init__(self):
        self.calls = []

    async def quote_and_execute(
        self,
        token: str,
        action: str,
        amount_usd: float,
        via: Optional[str] = None,
    ) -> TradeResult:
        try:
            route = swap_route(token, action, via)
        except ValueError as e:
            return TradeResult(error=str(e))
        self.calls.append((token, action.upper(), amount_usd, route))
        logger.info("DRY RUN %s: $%s %s", action.upper(), amount_usd, " → ".join(route))
        return TradeResult(dry_run=True)
