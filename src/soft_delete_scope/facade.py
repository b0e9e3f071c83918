"""
Scope-Override Facade

``ScopedView`` wraps any object (the client, a model delegate, ...) so that
every method called through it runs under an overridden scope context.
Nested collaborators are wrapped recursively and cached, so ``view.user``
returns the same wrapper while it is in use. Plain values and containers
(mappings, sets, sequences, dates, ...) are returned unwrapped.
"""

import inspect
import weakref
from collections.abc import Mapping as MappingABC
from collections.abc import Sequence, Set
from datetime import date, time, timedelta
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Mapping, Tuple
from uuid import UUID

from soft_delete_scope.context import ScopeContext, get_scope_context, use_scope_context

WITH_DELETED: Mapping[str, bool] = MappingProxyType({"include_deleted": True})
HARD_DELETE: Mapping[str, bool] = MappingProxyType({"hard_delete": True, "include_deleted": True})

OVERRIDES: Mapping[str, Mapping[str, bool]] = MappingProxyType(
    {"with_deleted": WITH_DELETED, "hard_delete": HARD_DELETE}
)

# values and containers keep their own protocols; only collaborators get wrapped
_PASS_THROUGH_TYPES = (
    type(None),
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    bytearray,
    Decimal,
    UUID,
    Enum,
    date,
    time,
    timedelta,
    MappingABC,
    Set,
    Sequence,
)


class ViewCache:
    """
    Identity-keyed wrapper cache, one namespace per override kind

    Views are held weakly: an entry lives as long as someone uses the view,
    and the view keeps its target alive, so an id is never reused while cached.
    """

    def __init__(self):
        self._views: "weakref.WeakValueDictionary[Tuple[str, int], ScopedView]" = (
            weakref.WeakValueDictionary()
        )

    def view(self, target: Any, kind: str) -> "ScopedView":
        key = (kind, id(target))
        cached = self._views.get(key)
        if cached is None or cached._scoped_target is not target:
            cached = ScopedView(target, kind, self)
            self._views[key] = cached
        return cached


async def _await_in_scope(awaitable: Awaitable[Any], context: ScopeContext) -> Any:
    with use_scope_context(context):
        return await awaitable


class ScopedView:
    """Forwarding wrapper that re-enters every call under ``OVERRIDES[kind]``"""

    def __init__(self, target: Any, kind: str, cache: ViewCache):
        self._scoped_target = target
        self._scoped_kind = kind
        self._scoped_cache = cache

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_scoped_"):
            raise AttributeError(name)

        target = self._scoped_target
        cache = self._scoped_cache
        if name in OVERRIDES:
            return lambda: cache.view(target, name)

        value = getattr(target, name)
        if callable(value):
            return self._wrap_callable(value)
        if isinstance(value, _PASS_THROUGH_TYPES):
            return value
        return cache.view(value, self._scoped_kind)

    def _wrap_callable(self, function):
        overrides = OVERRIDES[self._scoped_kind]

        def invoke(*args: Any, **kwargs: Any) -> Any:
            context = get_scope_context().merge(**overrides)
            with use_scope_context(context):
                result = function(*args, **kwargs)
            if inspect.isawaitable(result):
                return _await_in_scope(result, context)
            return result

        return invoke

    def __repr__(self) -> str:
        return f"<ScopedView {self._scoped_kind} of {self._scoped_target!r}>"
