"""Display formatting for global market statistics."""

from dataclasses import dataclass
from decimal import Decimal

from aggregator.models import GlobalMarketSnapshot

_TRILLION = Decimal("1000000000000")
_BILLION = Decimal("1000000000")
_MILLION = Decimal("1000000")


@dataclass
class Stat:
    """A single titled statistic ready for display."""

    title: str
    value: str
    icon_name: str


def format_currency(value: Decimal) -> str:
    """Abbreviate large USD amounts: $1.20T, $85.30B, $3.10M, else $1,234.56."""
    if value >= _TRILLION:
        return f"${value / _TRILLION:.2f}T"
    if value >= _BILLION:
        return f"${value / _BILLION:.2f}B"
    if value >= _MILLION:
        return f"${value / _MILLION:.2f}M"
    return f"${value:,.2f}"


def format_percent(value: Decimal, signed: bool = False) -> str:
    return f"{value:+.2f}%" if signed else f"{value:.2f}%"


def format_number(value: int) -> str:
    return f"{value:,}"


def build_market_stats(snapshot: GlobalMarketSnapshot, currency: str = "usd") -> list[Stat]:
    zero = Decimal("0")
    return [
        Stat("Market Cap", format_currency(snapshot.total_market_cap.get(currency, zero)), "globe"),
        Stat("24h Volume", format_currency(snapshot.total_volume.get(currency, zero)), "clock"),
        Stat("BTC Dom", format_percent(snapshot.market_cap_percentage.get("btc", zero)), "bitcoinsign.circle.fill"),
        Stat("ETH Dom", format_percent(snapshot.market_cap_percentage.get("eth", zero)), "chart.bar.fill"),
        Stat(
            "24h Change",
            format_percent(snapshot.market_cap_change_percentage_24h_usd, signed=True),
            "arrow.up.arrow.down.circle",
        ),
        Stat("Active Coins", format_number(snapshot.active_cryptocurrencies), "list.number"),
        Stat("Markets", format_number(snapshot.markets), "building.columns"),
    ]
