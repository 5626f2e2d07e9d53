"""
Per-bar and per-trade records and their line writers.

Each processed bar yields one BarLog; entries and exits yield TradeLogs.
Writers append one line per record, JSON or a compact text rendering.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pairtrader.config import LogFormat
from pairtrader.models import ExitReason, TradeDirection
from pairtrader.state.machine import PositionSnapshot, StrategyStatus

logger = logging.getLogger(__name__)


class LogEvent(Enum):
    ENTRY = "entry"
    EXIT = "exit"
    COOLDOWN_START = "cooldown_start"
    COOLDOWN_END = "cooldown_end"
    RESIDUAL_REPAIR = "residual_repair"
    ENTRY_FAILED = "entry_failed"
    EXIT_FAILED = "exit_failed"
    FUNDING_SKIP = "funding_skip"
    BELOW_MINIMUM = "below_minimum"


class TradeEvent(Enum):
    ENTRY = "entry"
    EXIT = "exit"


def _na(value: Any) -> str:
    return "NA" if value is None else str(value)


@dataclass
class BarLog:
    """Everything observed and decided on one bar."""

    timestamp: datetime
    state: StrategyStatus
    eth_price: Optional[float] = None
    btc_price: Optional[float] = None
    r: Optional[float] = None
    mu: Optional[float] = None
    sigma: Optional[float] = None
    sigma_eff: Optional[float] = None
    zscore: Optional[float] = None
    vol_eth: Optional[float] = None
    vol_btc: Optional[float] = None
    w_eth: Optional[float] = None
    w_btc: Optional[float] = None
    notional_eth: Optional[float] = None
    notional_btc: Optional[float] = None
    funding_eth: Optional[float] = None
    funding_btc: Optional[float] = None
    funding_cost_est: Optional[float] = None
    funding_skip: Optional[bool] = None
    unrealized_pnl: float = 0.0
    position: Optional[PositionSnapshot] = None
    events: List[LogEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "eth_price": self.eth_price,
            "btc_price": self.btc_price,
            "r": self.r,
            "mu": self.mu,
            "sigma": self.sigma,
            "sigma_eff": self.sigma_eff,
            "zscore": self.zscore,
            "vol_eth": self.vol_eth,
            "vol_btc": self.vol_btc,
            "w_eth": self.w_eth,
            "w_btc": self.w_btc,
            "notional_eth": self.notional_eth,
            "notional_btc": self.notional_btc,
            "funding_eth": self.funding_eth,
            "funding_btc": self.funding_btc,
            "funding_cost_est": self.funding_cost_est,
            "funding_skip": self.funding_skip,
            "unrealized_pnl": self.unrealized_pnl,
            "state": self.state.value,
            "position": self.position.to_dict() if self.position else None,
            "events": [e.value for e in self.events],
        }

    def format_text(self) -> str:
        return (
            f"[{self.timestamp.isoformat()}] ETH={_na(self.eth_price)} "
            f"BTC={_na(self.btc_price)} Z={_na(self.zscore)} "
            f"UPNL={self.unrealized_pnl} STATE={self.state.name}"
        )


@dataclass
class TradeLog:
    """One entry or exit fill of the pair."""

    timestamp: datetime
    event: TradeEvent
    direction: TradeDirection
    eth_qty: float
    btc_qty: float
    eth_price: float
    btc_price: float
    entry_time: datetime
    entry_eth_price: float
    entry_btc_price: float
    realized_pnl: float = 0.0
    cumulative_realized_pnl: float = 0.0
    exit_reason: Optional[ExitReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event": self.event.value,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "direction": self.direction.value,
            "eth_qty": self.eth_qty,
            "btc_qty": self.btc_qty,
            "eth_price": self.eth_price,
            "btc_price": self.btc_price,
            "entry_time": self.entry_time.isoformat(),
            "entry_eth_price": self.entry_eth_price,
            "entry_btc_price": self.entry_btc_price,
            "realized_pnl": self.realized_pnl,
            "cumulative_realized_pnl": self.cumulative_realized_pnl,
        }

    def format_text(self) -> str:
        event = self.event.name
        if self.exit_reason is not None:
            event = f"{event}({self.exit_reason.name})"
        return (
            f"[{self.timestamp.isoformat()}] EVENT={event} DIR={self.direction.name} "
            f"ETH_QTY={self.eth_qty} BTC_QTY={self.btc_qty} "
            f"ETH_PX={self.eth_price} BTC_PX={self.btc_price} "
            f"ENTRY_TIME={self.entry_time.isoformat()} "
            f"ENTRY_ETH_PX={self.entry_eth_price} ENTRY_BTC_PX={self.entry_btc_price} "
            f"REALIZED_PNL={self.realized_pnl} CUM_REALIZED_PNL={self.cumulative_realized_pnl}"
        )


class _LineWriter:
    """Appends formatted records to a file, one per line."""

    def __init__(self, path: Union[str, Path], fmt: LogFormat = LogFormat.JSON) -> None:
        self.path = Path(path)
        self.format = fmt
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _render(self, record: Union[BarLog, TradeLog]) -> str:
        if self.format == LogFormat.JSON:
            return json.dumps(record.to_dict())
        return record.format_text()

    def write(self, record: Union[BarLog, TradeLog]) -> None:
        line = self._render(record)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


class BarLogWriter(_LineWriter):
    pass


class TradeLogWriter(_LineWriter):
    pass
