from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional


ACADEMIC_YEAR = "2025-26"

CLASSES: tuple[str, ...] = ("LKG", "UKG", "1", "2", "3", "4", "5", "6", "7", "8", "9", "10")


@dataclass(frozen=True)
class FeeComponent:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class FeeStructure:
    class_name: str
    annual_fee: Decimal
    components: tuple[FeeComponent, ...] = field(default_factory=tuple)


_DEFAULT_COMPONENTS = (
    FeeComponent(name="Tuition", amount=Decimal("10000")),
    FeeComponent(name="Activity", amount=Decimal("2000")),
    FeeComponent(name="Development", amount=Decimal("3000")),
)


def _default_annual_fee(class_name: str) -> Decimal:
    if class_name in ("LKG", "UKG"):
        return Decimal("15000")
    if class_name == "10":
        return Decimal("25000")
    return Decimal("20000")


# Fee schedule used when a class has no override in config.
DEFAULT_FEES: Mapping[str, FeeStructure] = {
    c: FeeStructure(class_name=c, annual_fee=_default_annual_fee(c), components=_DEFAULT_COMPONENTS)
    for c in CLASSES
}


def normalize_class(class_name: str) -> str:
    return (class_name or "").strip().upper()


def fee_structure_for(class_name: str, overrides: Optional[Mapping[str, Decimal]] = None) -> FeeStructure:
    c = normalize_class(class_name)
    if c not in DEFAULT_FEES:
        raise ValueError(f"Unknown class {class_name!r} (expected one of: {', '.join(CLASSES)})")
    base = DEFAULT_FEES[c]
    if overrides and c in overrides:
        return FeeStructure(class_name=c, annual_fee=Decimal(overrides[c]), components=base.components)
    return base


def annual_fee_for(class_name: str, overrides: Optional[Mapping[str, Decimal]] = None) -> Decimal:
    return fee_structure_for(class_name, overrides).annual_fee
