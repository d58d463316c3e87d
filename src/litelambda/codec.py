"""
Typed value codec - native Python scalars to and from engine values.

The engine moves five kinds of values across its boundary: NULL, 64-bit
INTEGER, 64-bit REAL, TEXT and BLOB. ``sqlite3`` already surfaces them as
``None``/``int``/``float``/``str``/``bytes``; this module fixes which
native types may be bound, and which reads are allowed at which target
type, so that a row handler declared as ``(name: int, data: float)`` gets
exactly those types or a ``TypeMismatchError``.

Coercion table (read direction)::

    source \\ target   int        float   str   bytes  bool    raw
    ─────────────────────────────────────────────────────────────────
    INTEGER           yes        widen   ✗     ✗      != 0    yes
    REAL              truncate   yes     ✗     ✗      ✗       yes
    TEXT              ✗          ✗       yes   ✗      ✗       yes
    BLOB              ✗          ✗       ✗     yes    ✗       yes
    NULL              None if the target is Optional, else NullPolicy

Readers are built once per target (``make_reader``) and then applied to
every row, so per-value work is a single type lookup on the engine value.

Tags:
    codec, typed-values, sqlite, conversion, litelambda
"""

from __future__ import annotations

import inspect
import math
import types
import typing
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from litelambda.errors import NullConversionError, TypeMismatchError, UsageError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class ValueType(str, Enum):
    """The closed set of engine value variants."""

    NULL = "NULL"
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    BLOB = "BLOB"


class NullPolicy(str, Enum):
    """What to do with NULL read into a non-nullable target."""

    RAISE = "raise"
    ZERO = "zero"


@dataclass(frozen=True)
class TypedValue:
    """One engine value tagged with its variant."""

    type: ValueType
    value: Any = None

    @classmethod
    def null(cls) -> TypedValue:
        return cls(ValueType.NULL, None)

    @classmethod
    def integer(cls, value: int) -> TypedValue:
        return encode(int(value))

    @classmethod
    def real(cls, value: float) -> TypedValue:
        return cls(ValueType.REAL, float(value))

    @classmethod
    def text(cls, value: str) -> TypedValue:
        return cls(ValueType.TEXT, str(value))

    @classmethod
    def blob(cls, value: bytes) -> TypedValue:
        return cls(ValueType.BLOB, bytes(value))

    @property
    def is_null(self) -> bool:
        return self.type is ValueType.NULL


# Engine values come back from sqlite3 as exactly these Python types.
_ENGINE_VARIANTS: dict[type, ValueType] = {
    type(None): ValueType.NULL,
    int: ValueType.INTEGER,
    float: ValueType.REAL,
    str: ValueType.TEXT,
    bytes: ValueType.BLOB,
}

_TARGET_TYPES: tuple[type, ...] = (int, float, str, bytes, bool)

_ZERO_VALUES: dict[type, Any] = {int: 0, float: 0.0, str: "", bytes: b"", bool: False}


def _truncate(value: float) -> int:
    if not math.isfinite(value):
        raise TypeMismatchError(
            f"cannot truncate non-finite REAL {value!r} to int",
            source=ValueType.REAL.value,
            target="int",
        )
    # The engine clamps out-of-range reals when reading them as int64.
    return max(INT64_MIN, min(INT64_MAX, int(value)))


_DECODERS: dict[tuple[ValueType, type], Callable[[Any], Any]] = {
    (ValueType.INTEGER, int): int,
    (ValueType.INTEGER, float): float,
    (ValueType.INTEGER, bool): bool,
    (ValueType.REAL, float): float,
    (ValueType.REAL, int): _truncate,
    (ValueType.TEXT, str): str,
    (ValueType.BLOB, bytes): bytes,
}


def classify(value: Any) -> ValueType:
    """Variant of a value as returned by the engine."""
    try:
        return _ENGINE_VARIANTS[type(value)]
    except KeyError:
        raise TypeMismatchError(
            f"engine returned unsupported value of type {type(value).__name__}",
            source=type(value).__name__,
        ) from None


# =============================================================================
# ENCODING (bind direction)
# =============================================================================


def encode(value: Any) -> TypedValue:
    """
    Convert a native value to its typed value.

    ``bool`` binds as INTEGER 0/1; ``bytearray`` and ``memoryview`` bind as
    BLOB. Integers outside the signed 64-bit range cannot be represented.

    Raises:
        TypeMismatchError: The value has no engine representation.
    """
    if isinstance(value, TypedValue):
        return value
    if value is None:
        return TypedValue(ValueType.NULL, None)
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise TypeMismatchError(
                f"integer {value} does not fit in a signed 64-bit INTEGER",
                source="int",
                target=ValueType.INTEGER.value,
            )
        return TypedValue(ValueType.INTEGER, int(value))
    if isinstance(value, float):
        return TypedValue(ValueType.REAL, value)
    if isinstance(value, str):
        return TypedValue(ValueType.TEXT, value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return TypedValue(ValueType.BLOB, bytes(value))
    raise TypeMismatchError(
        f"cannot bind value of type {type(value).__name__}",
        source=type(value).__name__,
    )


def to_engine(value: Any) -> Any:
    """Encode and unwrap: the value handed to the engine's bind call."""
    return encode(value).value


# =============================================================================
# DECODING (extract direction)
# =============================================================================


@dataclass(frozen=True)
class Target:
    """
    A resolved read target.

    ``kind`` is one of ``int``, ``float``, ``str``, ``bytes``, ``bool``, or
    ``None`` for a raw read. ``typed`` asks for a ``TypedValue`` instead.
    """

    kind: type | None = None
    nullable: bool = False
    typed: bool = False

    @property
    def name(self) -> str:
        if self.typed:
            base = "TypedValue"
        elif self.kind is None:
            base = "Any"
        else:
            base = self.kind.__name__
        return f"{base} | None" if self.nullable else base


RAW = Target()


def resolve_target(annotation: Any) -> Target:
    """
    Resolve a type annotation into a read target.

    Accepts the scalar target types, ``TypedValue``, ``Any``/``object``,
    a missing annotation, and ``Optional[X]``/``X | None`` of the scalars.

    Raises:
        UsageError: The annotation names a type the codec cannot produce.
    """
    if annotation in (inspect.Parameter.empty, Any, object):
        return RAW
    if annotation is TypedValue:
        return Target(typed=True)
    if annotation in _TARGET_TYPES:
        return Target(kind=annotation)

    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        args = typing.get_args(annotation)
        members = [arg for arg in args if arg is not type(None)]
        if len(members) == 1 and len(members) < len(args):
            inner = resolve_target(members[0])
            if inner.kind is None:
                return inner
            return Target(kind=inner.kind, nullable=True)

    raise UsageError(f"unsupported row handler annotation: {annotation!r}")


def make_reader(target: Target, null_policy: NullPolicy = NullPolicy.RAISE) -> Callable[[Any], Any]:
    """Build the converter applied to every engine value read at ``target``."""
    if target.typed:
        return lambda value: TypedValue(classify(value), value)
    if target.kind is None:
        return _identity

    kind = target.kind
    decoders = {variant: fn for (variant, to), fn in _DECODERS.items() if to is kind}
    target_name = target.name

    if target.nullable:
        null_result: Any = None
        raise_on_null = False
    else:
        null_result = _ZERO_VALUES[kind]
        raise_on_null = null_policy is NullPolicy.RAISE

    def read(value: Any) -> Any:
        if value is None:
            if raise_on_null:
                raise NullConversionError(
                    f"NULL cannot be read as non-nullable {target_name}",
                    source=ValueType.NULL.value,
                    target=target_name,
                )
            return null_result
        variant = classify(value)
        decoder = decoders.get(variant)
        if decoder is None:
            raise TypeMismatchError(
                f"cannot read {variant.value} value {value!r} as {target_name}",
                source=variant.value,
                target=target_name,
            )
        return decoder(value)

    return read


def decode(
    value: TypedValue, target: Any, null_policy: NullPolicy = NullPolicy.RAISE
) -> Any:
    """Convert a typed value to the native type named by ``target``."""
    if not isinstance(target, Target):
        target = resolve_target(target)
    return make_reader(target, null_policy)(value.value)


def _identity(value: Any) -> Any:
    return value


__all__ = [
    "ValueType",
    "NullPolicy",
    "TypedValue",
    "Target",
    "RAW",
    "classify",
    "encode",
    "to_engine",
    "decode",
    "resolve_target",
    "make_reader",
]
