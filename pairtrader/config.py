"""
Configuration for the ETH/BTC pair mean-reversion strategy.

Defines default thresholds, sigma floor, sizing, funding controls, risk
limits, exchange constraints and runtime settings. The configuration is
constructed explicitly and passed down; nothing here is process-global
mutable state.

Usage:
    from pairtrader.config import Config, load_config

    config = Config()          # defaults
    config.validate()

    config = load_config()     # defaults overridden by PAIRTRADER_* env vars
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pairtrader.models import Symbol

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid or inconsistent configuration."""


# =============================================================================
# STRATEGY THRESHOLDS
# =============================================================================

# Z-score window: 384 x 15m bars = 4 days
DEFAULT_N_Z: int = 384

# Entry when |Z| crosses above this
DEFAULT_ENTRY_Z: float = 1.5

# Take profit when |Z| falls back inside this band
DEFAULT_TP_Z: float = 0.45

# Stop loss when |Z| reaches this
DEFAULT_SL_Z: float = 3.5

# 15-minute bars
BAR_INTERVAL_SECONDS: int = 900
BARS_PER_DAY: int = 96

# =============================================================================
# SIGMA FLOOR
# =============================================================================

DEFAULT_SIGMA_FLOOR_CONST: float = 0.001
DEFAULT_SIGMA_FLOOR_QUANTILE_WINDOW_DAYS: int = 30
DEFAULT_SIGMA_FLOOR_QUANTILE_P: float = 0.10
DEFAULT_SIGMA_FLOOR_EWMA_HALF_LIFE: int = 20

# =============================================================================
# POSITION SIZING
# =============================================================================

DEFAULT_CAPITAL_VALUE: float = 50000.0

# Volatility window: 672 x 15m bars = 7 days
DEFAULT_N_VOL: int = 672

DEFAULT_MAX_POSITION_GROUPS: int = 1

# =============================================================================
# FUNDING CONTROLS
# =============================================================================

DEFAULT_FUNDING_COST_THRESHOLD: float = 0.001
DEFAULT_FUNDING_THRESHOLD_K: float = 0.5
DEFAULT_FUNDING_SIZE_ALPHA: float = 0.5
DEFAULT_FUNDING_C_MIN_RATIO: float = 0.3

# Funding settles every 8 hours unless the venue reports otherwise
FUNDING_INTERVAL_HOURS: int = 8

# =============================================================================
# RISK
# =============================================================================

DEFAULT_MAX_HOLD_HOURS: int = 48
DEFAULT_COOLDOWN_HOURS: int = 24
DEFAULT_CONFIRM_BARS: int = 0

# =============================================================================
# EXECUTION
# =============================================================================

DEFAULT_SLIPPAGE_BPS: int = 5
DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_BASE_DELAY_MS: int = 200

# =============================================================================
# RUNTIME
# =============================================================================

DEFAULT_BASE_URL: str = "https://api.hyperliquid.xyz"
DEFAULT_RATE_LIMIT_MS: int = 200
DEFAULT_STATE_PATH: str = "data/pairtrader_state.json"

# =============================================================================
# BACKTEST
# =============================================================================

DEFAULT_FEE_BPS: int = 2
DEFAULT_BACKTEST_SLIPPAGE_BPS: int = 5
DEFAULT_BACKTEST_EQUITY: float = 100000.0

ENV_PREFIX: str = "PAIRTRADER_"


# =============================================================================
# ENUMS
# =============================================================================


class SigmaFloorMode(Enum):
    CONST = "const"
    QUANTILE = "quantile"
    EWMA_MIX = "ewma_mix"


class CapitalMode(Enum):
    FIXED_NOTIONAL = "fixed_notional"
    EQUITY_RATIO = "equity_ratio"


class MinSizePolicy(Enum):
    SKIP = "skip"
    ADJUST = "adjust"


class FundingMode(Enum):
    FILTER = "filter"
    THRESHOLD = "threshold"
    SIZE = "size"


class RoundingMode(Enum):
    FLOOR = "floor"
    CEIL = "ceil"
    ROUND = "round"


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"


class PriceField(Enum):
    MID = "mid"
    MARK = "mark"
    CLOSE = "close"


class LogFormat(Enum):
    JSON = "json"
    TEXT = "text"


# =============================================================================
# CONFIG SECTIONS
# =============================================================================


@dataclass
class StrategyConfig:
    """Z-score window and entry/exit thresholds."""

    n_z: int = DEFAULT_N_Z
    entry_z: float = DEFAULT_ENTRY_Z
    tp_z: float = DEFAULT_TP_Z
    sl_z: float = DEFAULT_SL_Z
    min_samples: Optional[int] = None  # None = full n_z window
    bars_per_day: int = BARS_PER_DAY

    @property
    def effective_min_samples(self) -> int:
        return self.min_samples if self.min_samples is not None else self.n_z


@dataclass
class SigmaFloorConfig:
    """Lower bound on rolling sigma for quiet regimes."""

    mode: SigmaFloorMode = SigmaFloorMode.CONST
    const_value: float = DEFAULT_SIGMA_FLOOR_CONST
    quantile_window_days: int = DEFAULT_SIGMA_FLOOR_QUANTILE_WINDOW_DAYS
    quantile_p: float = DEFAULT_SIGMA_FLOOR_QUANTILE_P
    ewma_half_life: int = DEFAULT_SIGMA_FLOOR_EWMA_HALF_LIFE


@dataclass
class PositionConfig:
    """Capital allocation and order sizing."""

    c_mode: CapitalMode = CapitalMode.FIXED_NOTIONAL
    c_value: Optional[float] = DEFAULT_CAPITAL_VALUE  # FIXED_NOTIONAL capital
    equity_ratio_k: Optional[float] = None            # EQUITY_RATIO fraction
    equity_value: Optional[float] = None              # Fallback equity when none supplied
    n_vol: int = DEFAULT_N_VOL
    max_notional: Optional[float] = None
    max_position_groups: int = DEFAULT_MAX_POSITION_GROUPS
    min_size_policy: MinSizePolicy = MinSizePolicy.SKIP


@dataclass
class FundingConfig:
    """Funding cost controls, applied in FILTER -> THRESHOLD -> SIZE order."""

    modes: List[FundingMode] = field(default_factory=lambda: [FundingMode.FILTER])
    funding_cost_threshold: Optional[float] = DEFAULT_FUNDING_COST_THRESHOLD
    threshold_k: Optional[float] = DEFAULT_FUNDING_THRESHOLD_K
    size_alpha: Optional[float] = DEFAULT_FUNDING_SIZE_ALPHA
    c_min_ratio: Optional[float] = DEFAULT_FUNDING_C_MIN_RATIO
    default_interval_hours: int = FUNDING_INTERVAL_HOURS


@dataclass
class RiskConfig:
    """Holding limits and post stop-loss cooldown."""

    max_hold_hours: int = DEFAULT_MAX_HOLD_HOURS
    cooldown_hours: int = DEFAULT_COOLDOWN_HOURS
    confirm_bars: int = DEFAULT_CONFIRM_BARS  # 0 = take profit immediately


@dataclass
class ExecutionConfig:
    """Order type, slippage allowance and retry shape."""

    order_type: OrderType = OrderType.MARKET
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS


@dataclass
class InstrumentConstraints:
    """Exchange lot and tick constraints for one instrument."""

    min_qty: float = 0.01
    min_notional: float = 10.0
    step_size: float = 0.001
    tick_size: float = 0.1
    qty_precision: int = 3
    price_precision: int = 1
    rounding: RoundingMode = RoundingMode.FLOOR


def _default_constraints() -> Dict[Symbol, InstrumentConstraints]:
    return {
        Symbol.ETH_PERP: InstrumentConstraints(),
        Symbol.BTC_PERP: InstrumentConstraints(
            min_qty=0.001,
            step_size=0.00001,
            tick_size=1.0,
            qty_precision=5,
            price_precision=0,
        ),
    }


@dataclass
class DataConfig:
    price_field: PriceField = PriceField.MID
    warmup_bars: Optional[int] = None


@dataclass
class RuntimeConfig:
    base_url: str = DEFAULT_BASE_URL
    interval_secs: int = BAR_INTERVAL_SECONDS
    rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    state_path: str = DEFAULT_STATE_PATH
    bar_log_path: Optional[str] = None
    trade_log_path: Optional[str] = None
    hyperliquid_user: Optional[str] = None  # Account address for equity queries


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: LogFormat = LogFormat.JSON


@dataclass
class AlertConfig:
    webhook_url: Optional[str] = None


@dataclass
class BacktestConfig:
    """Cost model for simulated fills."""

    fee_bps: int = DEFAULT_FEE_BPS
    slippage_bps: int = DEFAULT_BACKTEST_SLIPPAGE_BPS
    include_fees: bool = True
    include_slippage: bool = True
    include_funding: bool = True
    initial_equity: Optional[float] = None


@dataclass
class Config:
    """Complete strategy configuration."""

    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    sigma_floor: SigmaFloorConfig = field(default_factory=SigmaFloorConfig)
    position: PositionConfig = field(default_factory=PositionConfig)
    funding: FundingConfig = field(default_factory=FundingConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    instrument_constraints: Dict[Symbol, InstrumentConstraints] = field(
        default_factory=_default_constraints
    )
    data: DataConfig = field(default_factory=DataConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)

    @property
    def warmup_bars(self) -> int:
        """Bars of history needed before indicators are live."""
        if self.data.warmup_bars is not None:
            return self.data.warmup_bars
        return max(self.strategy.n_z, self.position.n_vol + 1)

    def constraints_for(self, symbol: Symbol) -> InstrumentConstraints:
        try:
            return self.instrument_constraints[symbol]
        except KeyError:
            raise ConfigError(f"missing instrument constraints for {symbol.value}") from None

    def validate(self) -> None:
        """
        Validate the whole configuration.

        Raises:
            ConfigError: On the first violated rule
        """
        s = self.strategy
        if s.n_z <= 0:
            raise ConfigError("strategy.n_z must be > 0")
        if s.bars_per_day <= 0:
            raise ConfigError("strategy.bars_per_day must be > 0")
        if s.min_samples is not None and not 2 <= s.min_samples <= s.n_z:
            raise ConfigError("strategy.min_samples must be within [2, n_z]")
        if s.entry_z >= s.sl_z:
            raise ConfigError("strategy.entry_z must be < strategy.sl_z")
        if s.tp_z >= s.entry_z:
            raise ConfigError("strategy.tp_z must be < strategy.entry_z")

        f = self.sigma_floor
        if f.mode == SigmaFloorMode.CONST:
            if f.const_value is None or f.const_value <= 0:
                raise ConfigError("sigma_floor.const_value must be > 0")
        else:
            if not 0 < f.quantile_p <= 1:
                raise ConfigError("sigma_floor.quantile_p must be in (0, 1]")
            if f.quantile_window_days <= 0:
                raise ConfigError("sigma_floor.quantile_window_days must be > 0")
            if f.mode == SigmaFloorMode.EWMA_MIX and f.ewma_half_life <= 0:
                raise ConfigError("sigma_floor.ewma_half_life must be > 0")

        p = self.position
        if p.n_vol <= 0:
            raise ConfigError("position.n_vol must be > 0")
        if p.c_mode == CapitalMode.FIXED_NOTIONAL:
            if p.c_value is None or p.c_value <= 0:
                raise ConfigError("position.c_value is required for fixed notional mode")
        elif p.equity_ratio_k is None or p.equity_ratio_k <= 0:
            raise ConfigError("position.equity_ratio_k is required for equity ratio mode")
        if p.max_notional is not None and p.max_notional <= 0:
            raise ConfigError("position.max_notional must be > 0")

        if self.funding.threshold_k is not None and self.funding.threshold_k < 0:
            raise ConfigError("funding.threshold_k must be >= 0")
        if self.funding.size_alpha is not None and self.funding.size_alpha < 0:
            raise ConfigError("funding.size_alpha must be >= 0")
        if self.funding.c_min_ratio is not None and not 0 <= self.funding.c_min_ratio <= 1:
            raise ConfigError("funding.c_min_ratio must be within [0, 1]")
        if self.funding.default_interval_hours <= 0:
            raise ConfigError("funding.default_interval_hours must be > 0")

        if self.execution.max_attempts < 0:
            raise ConfigError("execution.max_attempts must be >= 0")

        if not self.runtime.base_url:
            raise ConfigError("runtime.base_url must be set")
        if self.runtime.interval_secs <= 0:
            raise ConfigError("runtime.interval_secs must be > 0")

        for symbol in (Symbol.ETH_PERP, Symbol.BTC_PERP):
            c = self.constraints_for(symbol)
            if c.min_qty <= 0 or c.step_size <= 0 or c.tick_size <= 0:
                raise ConfigError(
                    f"constraints for {symbol.value} need min_qty, step_size and tick_size > 0"
                )


# =============================================================================
# ENVIRONMENT LOADING
# =============================================================================

# env var suffix -> (section, field, parser)
_ENV_FIELDS = {
    "N_Z": ("strategy", "n_z", int),
    "ENTRY_Z": ("strategy", "entry_z", float),
    "TP_Z": ("strategy", "tp_z", float),
    "SL_Z": ("strategy", "sl_z", float),
    "MIN_SAMPLES": ("strategy", "min_samples", int),
    "SIGMA_FLOOR_MODE": ("sigma_floor", "mode", SigmaFloorMode),
    "SIGMA_FLOOR_CONST": ("sigma_floor", "const_value", float),
    "SIGMA_FLOOR_QUANTILE_P": ("sigma_floor", "quantile_p", float),
    "SIGMA_FLOOR_QUANTILE_WINDOW_DAYS": ("sigma_floor", "quantile_window_days", int),
    "SIGMA_FLOOR_EWMA_HALF_LIFE": ("sigma_floor", "ewma_half_life", int),
    "C_MODE": ("position", "c_mode", CapitalMode),
    "C_VALUE": ("position", "c_value", float),
    "EQUITY_RATIO_K": ("position", "equity_ratio_k", float),
    "N_VOL": ("position", "n_vol", int),
    "MAX_NOTIONAL": ("position", "max_notional", float),
    "MIN_SIZE_POLICY": ("position", "min_size_policy", MinSizePolicy),
    "FUNDING_COST_THRESHOLD": ("funding", "funding_cost_threshold", float),
    "FUNDING_THRESHOLD_K": ("funding", "threshold_k", float),
    "FUNDING_SIZE_ALPHA": ("funding", "size_alpha", float),
    "FUNDING_C_MIN_RATIO": ("funding", "c_min_ratio", float),
    "MAX_HOLD_HOURS": ("risk", "max_hold_hours", int),
    "COOLDOWN_HOURS": ("risk", "cooldown_hours", int),
    "CONFIRM_BARS": ("risk", "confirm_bars", int),
    "ORDER_TYPE": ("execution", "order_type", OrderType),
    "SLIPPAGE_BPS": ("execution", "slippage_bps", int),
    "MAX_ATTEMPTS": ("execution", "max_attempts", int),
    "BASE_DELAY_MS": ("execution", "base_delay_ms", int),
    "PRICE_FIELD": ("data", "price_field", PriceField),
    "BASE_URL": ("runtime", "base_url", str),
    "INTERVAL_SECS": ("runtime", "interval_secs", int),
    "RATE_LIMIT_MS": ("runtime", "rate_limit_ms", int),
    "STATE_PATH": ("runtime", "state_path", str),
    "BAR_LOG_PATH": ("runtime", "bar_log_path", str),
    "TRADE_LOG_PATH": ("runtime", "trade_log_path", str),
    "HYPERLIQUID_USER": ("runtime", "hyperliquid_user", str),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FORMAT": ("logging", "format", LogFormat),
    "WEBHOOK_URL": ("alerts", "webhook_url", str),
}


def _parse_funding_modes(raw: str) -> List[FundingMode]:
    return [FundingMode(part.strip().lower()) for part in raw.split(",") if part.strip()]


def load_config(
    env_path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Config:
    """
    Build a validated Config from defaults and PAIRTRADER_* environment variables.

    Args:
        env_path: Optional .env file loaded with python-dotenv before reading
        environ: Mapping to read instead of os.environ (tests)

    Returns:
        Validated Config

    Raises:
        ConfigError: If a value cannot be parsed or validation fails
    """
    if environ is None:
        from dotenv import load_dotenv

        if env_path is not None and env_path.exists():
            load_dotenv(env_path, override=False)
        else:
            load_dotenv(override=False)
        environ = dict(os.environ)

    config = Config()
    for suffix, (section, name, parser) in _ENV_FIELDS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        value = raw.strip().lower() if isinstance(parser, type) and issubclass(parser, Enum) else raw
        try:
            parsed = parser(value)
        except ValueError as e:
            raise ConfigError(f"invalid {ENV_PREFIX}{suffix}={raw!r}: {e}") from e
        setattr(getattr(config, section), name, parsed)

    modes = environ.get(ENV_PREFIX + "FUNDING_MODES")
    if modes:
        try:
            config.funding.modes = _parse_funding_modes(modes)
        except ValueError as e:
            raise ConfigError(f"invalid {ENV_PREFIX}FUNDING_MODES={modes!r}: {e}") from e

    config.validate()
    logger.debug(
        f"Config loaded: n_z={config.strategy.n_z} entry_z={config.strategy.entry_z} "
        f"tp_z={config.strategy.tp_z} sl_z={config.strategy.sl_z}"
    )
    return config
