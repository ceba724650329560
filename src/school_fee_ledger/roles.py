from __future__ import annotations

from enum import Enum
from typing import Mapping


class Role(str, Enum):
    ADMIN = "admin"
    ACCOUNTANT = "accountant"
    TEACHER = "teacher"
    PARENT = "parent"


class Capability(str, Enum):
    RECORD_PAYMENT = "record_payment"
    MANAGE_STUDENTS = "manage_students"
    EDIT_STUDENTS = "edit_students"
    MANAGE_FEES = "manage_fees"
    VIEW_REPORTS = "view_reports"


ROLE_CAPABILITIES: Mapping[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.ACCOUNTANT: frozenset({Capability.RECORD_PAYMENT, Capability.EDIT_STUDENTS, Capability.VIEW_REPORTS}),
    Role.TEACHER: frozenset({Capability.EDIT_STUDENTS, Capability.VIEW_REPORTS}),
    Role.PARENT: frozenset(),
}


def can(role: Role, capability: Capability) -> bool:
    return Capability(capability) in ROLE_CAPABILITIES.get(Role(role), frozenset())


def require(role: Role, capability: Capability) -> None:
    if not can(role, capability):
        raise PermissionError(f"Role {Role(role).value!r} is not allowed to {Capability(capability).value}")
