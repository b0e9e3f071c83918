"""
Soft Delete Scope Context

Call-chain scoped flags controlling soft-delete behaviour. The value lives in a
``ContextVar`` so that each asyncio task sees the context it was created under;
calls launched together with ``asyncio.gather`` never observe each other's
overrides.
"""

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Iterator


@dataclass(frozen=True)
class ScopeContext:
    """
    ``include_deleted`` makes logically-deleted rows visible to reads.
    ``hard_delete`` turns delete operations into physical deletes and implies
    ``include_deleted``.
    """

    hard_delete: bool = False
    include_deleted: bool = False

    def __post_init__(self):
        if self.hard_delete and not self.include_deleted:
            raise ValueError("hard_delete requires include_deleted")

    def merge(self, **overrides: bool) -> "ScopeContext":
        if overrides.get("hard_delete"):
            overrides["include_deleted"] = True
        return replace(self, **overrides)


DEFAULT_SCOPE = ScopeContext()

_scope_context: contextvars.ContextVar[ScopeContext] = contextvars.ContextVar(
    "soft_delete_scope", default=DEFAULT_SCOPE
)


def get_scope_context() -> ScopeContext:
    """Get the scope context of the current call chain"""
    return _scope_context.get()


@contextmanager
def scope_context(**overrides: bool) -> Iterator[ScopeContext]:
    """Run the enclosed block under the current context merged with ``overrides``"""
    merged = get_scope_context().merge(**overrides)
    token = _scope_context.set(merged)
    try:
        yield merged
    finally:
        _scope_context.reset(token)


@contextmanager
def use_scope_context(context: ScopeContext) -> Iterator[ScopeContext]:
    """Run the enclosed block under an already resolved context value"""
    token = _scope_context.set(context)
    try:
        yield context
    finally:
        _scope_context.reset(token)
