"""
Write Transformer Tests

Uses a recording delegate in place of the host engine.
"""

from datetime import datetime

import pytest

from soft_delete_scope.context import scope_context
from soft_delete_scope.errors import SoftDeleteConfigurationError
from soft_delete_scope.writes import SoftDeleteModelDelegate, build_soft_delete_data

FIXED_NOW = datetime(2026, 3, 4, 5, 6, 7)


class _RecordingDelegate:
    def __init__(self):
        self.calls = []

    async def update(self, **args):
        self.calls.append(("update", args))
        return {"updated": args}

    async def update_many(self, **args):
        self.calls.append(("update_many", args))
        return {"count": 1}

    async def delete(self, **args):
        self.calls.append(("delete", args))
        return {"deleted": args}

    async def delete_many(self, **args):
        self.calls.append(("delete_many", args))
        return {"count": 2}

    def find_many(self, **args):
        return ("find_many", args)


class _UpdateOnlyDelegate:
    async def update(self, **args):
        return args


def _wrap(registry, delegate, entity="User"):
    return SoftDeleteModelDelegate(delegate, entity, registry, clock=lambda: FIXED_NOW)


class TestSoftDeleteConversion:
    """Test deletes become timestamp updates"""

    @pytest.mark.asyncio
    async def test_delete_becomes_update(self, registry):
        """Test delete becomes update with deleted_at"""
        delegate = _RecordingDelegate()
        await _wrap(registry, delegate).delete(where={"email": "a@example.com"})

        assert delegate.calls == [
            ("update", {"where": {"email": "a@example.com"}, "data": {"deleted_at": FIXED_NOW}}),
        ]

    @pytest.mark.asyncio
    async def test_delete_many_becomes_update_many(self, registry):
        """Test delete_many becomes update_many with deleted_at"""
        delegate = _RecordingDelegate()
        result = await _wrap(registry, delegate).delete_many(where={"name": "A"})

        assert result == {"count": 1}
        assert delegate.calls == [("update_many", {"where": {"name": "A"}, "data": {"deleted_at": FIXED_NOW}})]

    @pytest.mark.asyncio
    async def test_caller_data_is_merged_and_not_mutated(self, registry):
        """Test caller data is merged into a copy"""
        delegate = _RecordingDelegate()
        data = {"name": "Gone"}
        await _wrap(registry, delegate).delete(where={"id": 1}, data=data)

        assert delegate.calls[0][1]["data"] == {"name": "Gone", "deleted_at": FIXED_NOW}
        assert data == {"name": "Gone"}

    def test_build_soft_delete_data_ignores_non_dict(self):
        """Test non-dict data is replaced"""
        assert build_soft_delete_data("junk", "deleted_at", FIXED_NOW) == {"deleted_at": FIXED_NOW}


class TestPhysicalDelete:
    """Test physical delete paths"""

    @pytest.mark.asyncio
    async def test_hard_delete_context_forwards_delete(self, registry):
        """Test hard_delete mode forwards to delete"""
        delegate = _RecordingDelegate()
        with scope_context(hard_delete=True):
            await _wrap(registry, delegate).delete(where={"id": 1})

        assert delegate.calls == [("delete", {"where": {"id": 1}})]

    @pytest.mark.asyncio
    async def test_non_soft_deletable_entity_forwards_delete_many(self, registry):
        """Test plain entities forward to delete_many"""
        delegate = _RecordingDelegate()
        result = await _wrap(registry, delegate, entity="Comment").delete_many()

        assert result == {"count": 2}
        assert delegate.calls == [("delete_many", {})]

    @pytest.mark.asyncio
    async def test_missing_physical_delete_is_a_configuration_error(self, registry):
        """Test a delegate without delete raises"""
        with scope_context(hard_delete=True):
            with pytest.raises(SoftDeleteConfigurationError, match="does not support delete"):
                await _wrap(registry, _UpdateOnlyDelegate()).delete(where={"id": 1})


class TestForwarding:
    """Test attribute forwarding to the wrapped delegate"""

    def test_other_attributes_are_forwarded(self, registry):
        """Test other attributes come from the wrapped delegate"""
        wrapped = _wrap(registry, _RecordingDelegate())

        assert wrapped.find_many(where={"id": 1}) == ("find_many", {"where": {"id": 1}})
        assert wrapped.name == "User"
        with pytest.raises(AttributeError):
            wrapped.does_not_exist
