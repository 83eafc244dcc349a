from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional
import os, yaml
from dotenv import load_dotenv

class Trading(BaseModel):
    dry_run: bool = True
    require_demo: bool = True
    deviation_points: int = 10
    volume_mode: str = "min"     # 'min' | 'fixed' | 'risk'
    fixed_volume: float = 0.01
    stop_loss_points: int = 300  # used when risk management is on

class MT5(BaseModel):
    terminal_path: Optional[str] = None
    server: Optional[str] = None
    login: Optional[int] = None
    password: Optional[str] = None

class DecisionCfg(BaseModel):
    buy_threshold: float = Field(70.0, ge=0, le=100)
    sell_threshold: float = Field(70.0, ge=0, le=100)
    close_threshold: float = Field(70.0, ge=0, le=100)
    close_all_threshold: float = Field(20.0, ge=0, le=100)
    cooldown_minutes: int = Field(15, ge=0)
    max_positions: int = Field(1, ge=1)
    risk_percent: float = Field(1.0, gt=0, le=100)
    min_risk_reward: float = Field(1.5, gt=0)
    allow_multiple_positions: bool = False
    enforce_cooldown: bool = True
    use_risk_management: bool = True
    max_package_age_seconds: int = Field(300, ge=60)
    base_magic: int = Field(401, ge=1)

class AggregatorCfg(BaseModel):
    # module name -> weight; normalised to 100 at startup
    weights: Dict[str, float] = {
        "mtf": 25.0,
        "poi": 20.0,
        "volume": 15.0,
        "rsi": 15.0,
        "macd": 15.0,
        "pattern": 10.0,
    }
    min_modules: int = Field(3, ge=1)
    min_confidence: float = Field(50.0, ge=0, le=100)
    min_update_seconds: int = Field(60, ge=0)

    @field_validator("weights")
    @classmethod
    def _positive_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        bad = [k for k, w in v.items() if w < 0]
        if bad:
            raise ValueError(f"negative weights for modules: {bad}")
        return v

class TrendCfg(BaseModel):
    capacity: int = Field(100, ge=3)
    lookback: int = Field(10, ge=3)
    volatility_threshold: float = Field(0.1, gt=0)
    degradation_threshold: float = Field(0.15, gt=0)
    short_periods: int = Field(5, ge=1)
    long_periods: int = Field(20, ge=2)
    annotate_packages: bool = True

class TelemetryCfg(BaseModel):
    console_enabled: bool = True
    console_channels: list[str] = ["ops", "audit"]
    console_min_level: str = "INFO"
    otel_metrics_enabled: bool = False
    otel_export_interval_ms: int = Field(60_000, ge=1000)

class ScheduleCfg(BaseModel):
    run_forever: bool = False
    interval_seconds: int = 60

class AppConfig(BaseModel):
    symbols: list[str]
    timeframe: str = "M15"
    lookback_days: int = 10
    decision: DecisionCfg = DecisionCfg()
    aggregator: AggregatorCfg = AggregatorCfg()
    trend: TrendCfg = TrendCfg()
    trading: Trading = Trading()
    mt5: MT5 = MT5()
    telemetry: TelemetryCfg = TelemetryCfg()
    schedule: ScheduleCfg = ScheduleCfg()

def load_config(path: str) -> AppConfig:
    load_dotenv(override=False)
    import pathlib
    p = pathlib.Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return parse_config(raw)

def parse_config(raw: dict) -> AppConfig:
    """Validate a raw mapping, filling MT5 credentials from the environment when blank."""
    raw = dict(raw or {})
    mt5_cfg = dict(raw.get("mt5") or {})

    def coalesce(yaml_val, env_val):
        return env_val if (yaml_val in (None, "", 0) and env_val not in (None, "")) else yaml_val

    env_login = os.getenv("MT5_LOGIN")
    mt5_cfg["terminal_path"] = coalesce(mt5_cfg.get("terminal_path"), os.getenv("MT5_TERMINAL_PATH"))
    mt5_cfg["server"]        = coalesce(mt5_cfg.get("server"),        os.getenv("MT5_SERVER"))
    mt5_cfg["login"]         = coalesce(mt5_cfg.get("login"),         int(env_login) if env_login and env_login.isdigit() else None)
    mt5_cfg["password"]      = coalesce(mt5_cfg.get("password"),      os.getenv("MT5_PASSWORD"))

    raw["mt5"] = mt5_cfg
    return AppConfig.model_validate(raw)
