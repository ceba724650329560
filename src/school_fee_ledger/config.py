from __future__ import annotations

import json
import logging
import os
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .dues import OverpaymentPolicy
from .fees import ACADEMIC_YEAR, CLASSES, normalize_class


logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
_ACADEMIC_YEAR_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _parse_class_fees_env(value: str) -> dict[str, str]:
    """
    Parse CLASS_FEES overrides: "LKG=15000, 10=26000" or a JSON object {"LKG": 15000}.
    Invalid tokens are logged and skipped.
    """
    s = (value or "").strip()
    if not s:
        return {}

    pairs: list[tuple[str, str]] = []
    if s.startswith("{"):
        try:
            data = json.loads(s)
        except ValueError:
            data = None
        if isinstance(data, dict):
            pairs = [(str(k), str(v)) for k, v in data.items()]
        else:
            logger.warning("Ignoring CLASS_FEES: not a JSON object")
            return {}
    else:
        for token in re.split(r"[,;]+", s):
            name, sep, amount = token.partition("=")
            pairs.append((name, amount) if sep else (token, ""))

    out: dict[str, str] = {}
    invalid: list[str] = []
    for name, amount in pairs:
        c = normalize_class(name)
        if not c and not amount.strip():
            continue
        try:
            ok = c in CLASSES and Decimal(amount.strip()) >= 0
        except InvalidOperation:
            ok = False
        if not ok:
            invalid.append(f"{name.strip()}={amount.strip()}")
            continue
        out[c] = amount.strip()

    if invalid:
        logger.warning("Ignoring invalid CLASS_FEES tokens: %s", ", ".join(invalid))
    return out


def _default_config_from_env() -> dict:
    """
    Env-only defaults; a YAML file is an optional override on top.
    """
    return {
        "school": {
            "name": os.getenv("SCHOOL_NAME", "School"),
            "academic_year": os.getenv("ACADEMIC_YEAR", ACADEMIC_YEAR),
            "currency_symbol": os.getenv("CURRENCY_SYMBOL", "₹"),
        },
        "ledger": {
            "overpayment_policy": os.getenv("OVERPAYMENT_POLICY", OverpaymentPolicy.REJECT.value),
        },
        "fees": _parse_class_fees_env(os.getenv("CLASS_FEES", "")),
        "state": {
            "db_path": os.getenv("STATE_DB_PATH", "data/ledger.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/ledger.log"),
        },
    }


class SchoolConfig(BaseModel):
    name: str = "School"
    # Label of the current billing period, e.g. "2025-26".
    academic_year: str = ACADEMIC_YEAR
    currency_symbol: str = "₹"

    @field_validator("academic_year")
    @classmethod
    def _validate_academic_year(cls, v: str) -> str:
        s = (v or "").strip()
        m = _ACADEMIC_YEAR_RE.match(s)
        if not m:
            raise ValueError("school.academic_year must look like '2025-26'")
        start = int(m.group(1))
        if (start + 1) % 100 != int(m.group(2)):
            raise ValueError(f"school.academic_year {s!r} must span consecutive years (e.g. '{start}-{(start + 1) % 100:02d}')")
        return s


class LedgerConfig(BaseModel):
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.REJECT


class StateConfig(BaseModel):
    db_path: str = "data/ledger.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/ledger.log"


class AppConfig(BaseModel):
    school: SchoolConfig = SchoolConfig()
    ledger: LedgerConfig = LedgerConfig()
    # Per-class annual fee overrides; classes not listed use the built-in schedule.
    fees: dict[str, Decimal] = Field(default_factory=dict)
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("fees", mode="before")
    @classmethod
    def _stringify_class_keys(cls, v: object) -> object:
        # YAML reads `10: 26000` with an int key.
        if isinstance(v, dict):
            return {str(k): amount for k, amount in v.items()}
        return v

    @model_validator(mode="after")
    def _normalize_fees(self) -> "AppConfig":
        fees: dict[str, Decimal] = {}
        for name, amount in self.fees.items():
            c = normalize_class(name)
            if c not in CLASSES:
                raise ValueError(f"fees: unknown class {name!r} (expected one of: {', '.join(CLASSES)})")
            if amount < 0:
                raise ValueError(f"fees: annual fee for class {c} cannot be negative")
            fees[c] = amount
        self.fees = fees
        return self


def load_config(path: Union[str, Path]) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
