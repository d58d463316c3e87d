"""
Row dispatcher - call a row handler with typed columns.

The handler's own parameter list is the query's result contract. Before
the first row is stepped, ``plan_for`` inspects the handler once and fixes
how many columns are read and which codec reader applies to each position;
the per-row loop then only indexes and converts.

Examples:
    >>> def show(name: int, data: float) -> None:
    ...     print(name, data)
    >>> plan = plan_for(show)
    >>> plan.arity
    2
    >>> plan.extract((3, 1.5))
    (3, 1.5)

Handler rules:
    - Positional parameters map to columns 0, 1, 2, ... in order
    - ``*args`` absorbs every remaining column
    - Keyword-only parameters must have defaults
    - Extra columns beyond what the handler takes are ignored
"""

from __future__ import annotations

import functools
import inspect
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from litelambda.codec import NullPolicy, Target, make_reader, resolve_target
from litelambda.errors import TypeMismatchError, UsageError

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


@dataclass(frozen=True)
class RowPlan:
    """Column readers fixed from a handler signature."""

    targets: tuple[Target, ...]
    readers: tuple[Callable[[Any], Any], ...]
    rest_reader: Callable[[Any], Any] | None = None

    @property
    def arity(self) -> int:
        """Number of columns every row must supply."""
        return len(self.readers)

    @property
    def variadic(self) -> bool:
        return self.rest_reader is not None

    def extract(self, row: tuple[Any, ...]) -> tuple[Any, ...]:
        """Convert one engine row into the handler's argument tuple."""
        if len(row) < self.arity:
            raise UsageError(
                f"row handler takes {self.arity} column(s) but the result has {len(row)}"
            )
        values = []
        for column, read in enumerate(self.readers):
            try:
                values.append(read(row[column]))
            except TypeMismatchError as error:
                error.with_context(column=column)
                raise
        if self.rest_reader is not None:
            for column in range(self.arity, len(row)):
                try:
                    values.append(self.rest_reader(row[column]))
                except TypeMismatchError as error:
                    error.with_context(column=column)
                    raise
        return tuple(values)


def _hint_source(handler: Callable[..., Any]) -> Any:
    while isinstance(handler, functools.partial):
        handler = handler.func
    if inspect.isfunction(handler) or inspect.ismethod(handler):
        return handler
    if inspect.isclass(handler):
        return handler.__init__
    call = getattr(type(handler), "__call__", None)
    return call if call is not None else handler


def _type_hints(handler: Callable[..., Any]) -> dict[str, Any]:
    try:
        hints = typing.get_type_hints(_hint_source(handler))
        # NamedTuple classes inherit object.__init__; their fields live on the class.
        if not hints and inspect.isclass(handler):
            hints = typing.get_type_hints(handler)
        return hints
    except (NameError, TypeError) as exc:
        raise UsageError(f"cannot resolve row handler annotations: {exc}") from exc


def plan_for(handler: Callable[..., Any], null_policy: NullPolicy = NullPolicy.RAISE) -> RowPlan:
    """
    Build the extraction plan for ``handler``.

    Raises:
        UsageError: The handler is not introspectable, has a required
            keyword-only parameter, or declares an unsupported type.
    """
    if not callable(handler):
        raise UsageError(f"row handler must be callable, got {type(handler).__name__}")
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError) as exc:
        raise UsageError(f"cannot inspect row handler signature: {exc}") from exc

    hints = _type_hints(handler)
    targets: list[Target] = []
    rest: Target | None = None

    for param in signature.parameters.values():
        annotation = hints.get(param.name, param.annotation)
        if param.kind in _POSITIONAL:
            targets.append(resolve_target(annotation))
        elif param.kind is inspect.Parameter.VAR_POSITIONAL:
            rest = resolve_target(annotation)
        elif param.kind is inspect.Parameter.KEYWORD_ONLY and param.default is inspect.Parameter.empty:
            raise UsageError(
                f"row handler keyword-only parameter {param.name!r} needs a default"
            )

    return RowPlan(
        targets=tuple(targets),
        readers=tuple(make_reader(target, null_policy) for target in targets),
        rest_reader=make_reader(rest, null_policy) if rest is not None else None,
    )


class RowDispatcher:
    """
    Drive a step function and invoke a handler for every row.

    ``step`` returns the next engine row or ``None`` once the result set is
    exhausted. ``in_handler`` tells the owner whether an exception escaped
    from the handler itself rather than from stepping or conversion.
    """

    def __init__(self, handler: Callable[..., Any], plan: RowPlan):
        self.handler = handler
        self.plan = plan
        self.delivered = 0
        self.in_handler = False

    def run(
        self,
        step: Callable[[], tuple[Any, ...] | None],
        sink: list[Any] | None = None,
    ) -> int:
        """Process rows until ``step`` reports exhaustion. Returns rows delivered."""
        while True:
            row = step()
            if row is None:
                return self.delivered
            args = self.plan.extract(row)
            self.in_handler = True
            result = self.handler(*args)
            self.in_handler = False
            self.delivered += 1
            if sink is not None:
                sink.append(result)
