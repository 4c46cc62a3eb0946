# Overview: Typed partial-update ("patch") support with an explicit UNSET marker.

"""
Patch dataclasses declare every updatable field with a default of UNSET.

- UNSET     -> the field was not supplied; leave the column untouched
- None      -> the field was supplied and explicitly cleared
- any value -> the field was supplied with a new value

This keeps "not supplied" and "explicitly cleared" distinct, which a plain
Optional cannot do.
"""

from __future__ import annotations

from dataclasses import fields
from typing import Any, TypeVar, Union

from .errors import ValidationFailed


class _Unset:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

T = TypeVar("T")
Maybe = Union[_Unset, T]


def is_set(value) -> bool:
    return value is not UNSET


def supplied_fields(patch) -> dict[str, Any]:
    """Return {field_name: value} for every field the caller supplied."""
    return {
        f.name: getattr(patch, f.name)
        for f in fields(patch)
        if is_set(getattr(patch, f.name))
    }


def patch_from_payload(patch_cls: type[T], data: dict | None) -> T:
    """
    Build a patch from a JSON body.

    Keys that are absent stay UNSET; keys present with null become None.
    Unknown keys are rejected so clients cannot reach non-patchable columns.
    """
    data = data or {}
    allowed = {f.name for f in fields(patch_cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationFailed(
            "Fields not updatable: " + ", ".join(unknown),
            details={"fields": unknown, "allowed": sorted(allowed)},
        )
    return patch_cls(**{k: v for k, v in data.items() if k in allowed})


def apply_patch(target, patch, *, nullable: set[str] | None = None) -> dict[str, tuple]:
    """
    Apply supplied patch fields to target.

    Returns {field: (before, after)} for fields whose value actually changed,
    suitable for an audit snapshot.
    """
    nullable = nullable or set()
    changes: dict[str, tuple] = {}
    for name, value in supplied_fields(patch).items():
        if value is None and name not in nullable:
            raise ValidationFailed(f"{name} cannot be cleared")
        before = getattr(target, name)
        if before != value:
            setattr(target, name, value)
            changes[name] = (before, value)
    return changes
