import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip() not in {"", "0", "false", "False", "no", "NO"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    erp_api_base_url: str
    erp_api_token: Optional[str]
    erp_api_timeout_seconds: float
    payroll_min_year: int
    payroll_max_year: int
    overlap_fail_closed: bool
    in_flight_timeout_seconds: float


def get_settings() -> Settings:
    """Read settings from the environment on every call so tests can patch env vars."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./payroll_workflow.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        erp_api_base_url=os.getenv("ERP_API_BASE_URL", "http://localhost:5000"),
        erp_api_token=os.getenv("ERP_API_TOKEN") or None,
        erp_api_timeout_seconds=_env_float("ERP_API_TIMEOUT_SECONDS", 30.0),
        payroll_min_year=_env_int("PAYROLL_MIN_YEAR", 2015),
        payroll_max_year=_env_int("PAYROLL_MAX_YEAR", 2050),
        overlap_fail_closed=_env_flag("PAYROLL_OVERLAP_FAIL_CLOSED"),
        in_flight_timeout_seconds=_env_float("PAYROLL_IN_FLIGHT_TIMEOUT_SECONDS", 300.0),
    )
