from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_group, make_type

from fleetward.errors import (
    ActionNotAllowedError,
    FamilyMismatchError,
    SafetyViolation,
    UnknownNodeGroupError,
    UnrecognizedFormatError,
)
from fleetward.guard import FamilyLockGuard, NodeGroupAction

pytestmark = [pytest.mark.unit]


def fake_provider(*groups):
    provider = MagicMock()
    provider.discover_node_groups = AsyncMock(return_value=list(groups))
    provider.get_family_sizes = AsyncMock(return_value=[])
    return provider


class TestRefresh:
    async def test_snapshot_replaced_wholesale(self):
        provider = fake_provider(make_group("a"), make_group("b"))
        guard = FamilyLockGuard(provider)
        await guard.refresh()
        assert {g.id for g in await guard.get_all_node_groups()} == {"a", "b"}

        provider.discover_node_groups.return_value = [make_group("c")]
        await guard.refresh()
        assert [g.id for g in await guard.get_all_node_groups()] == ["c"]
        assert await guard.get_node_group("a") is None

    async def test_failed_refresh_keeps_previous_snapshot(self):
        provider = fake_provider(make_group("a"))
        guard = FamilyLockGuard(provider)
        await guard.refresh()

        provider.discover_node_groups.side_effect = RuntimeError("api down")
        with pytest.raises(RuntimeError):
            await guard.refresh()
        assert await guard.get_node_group("a") is not None


class TestValidateScaleUp:
    async def test_same_family_allowed(self):
        guard = FamilyLockGuard(fake_provider(make_group("w", "m5.xlarge")))
        await guard.refresh()
        await guard.validate_scale_up("w", "m5.4xlarge")

    async def test_family_case_ignored(self):
        guard = FamilyLockGuard(fake_provider(make_group("w", "M5.xlarge")))
        await guard.refresh()
        await guard.validate_scale_up("w", "m5.8xlarge")

    async def test_different_family_blocked(self):
        guard = FamilyLockGuard(fake_provider(make_group("w", "m5.xlarge")))
        await guard.refresh()
        with pytest.raises(FamilyMismatchError) as exc_info:
            await guard.validate_scale_up("w", "m6i.xlarge")
        err = exc_info.value
        assert err.current_family == "m5"
        assert err.proposed_family == "m6i"
        assert "BLOCKED" in str(err)
        assert isinstance(err, SafetyViolation)

    async def test_gcp_shape_change_blocked(self):
        guard = FamilyLockGuard(fake_provider(make_group("pool", "n2-standard-4")))
        await guard.refresh()
        with pytest.raises(FamilyMismatchError):
            await guard.validate_scale_up("pool", "n2-highmem-4")

    async def test_unknown_group_triggers_one_refresh(self):
        provider = fake_provider()
        guard = FamilyLockGuard(provider)
        await guard.refresh()
        provider.discover_node_groups.return_value = [make_group("late", "c5.large")]

        await guard.validate_scale_up("late", "c5.2xlarge")
        assert provider.discover_node_groups.await_count == 2

    async def test_still_unknown_after_refresh(self):
        provider = fake_provider(make_group("a"))
        guard = FamilyLockGuard(provider)
        with pytest.raises(UnknownNodeGroupError):
            await guard.validate_scale_up("missing", "m5.large")
        assert provider.discover_node_groups.await_count == 1

    async def test_refresh_failure_reports_unknown_group(self):
        provider = fake_provider()
        provider.discover_node_groups.side_effect = RuntimeError("api down")
        guard = FamilyLockGuard(provider)
        with pytest.raises(UnknownNodeGroupError):
            await guard.validate_scale_up("w", "m5.large")

    async def test_unparseable_proposal(self):
        guard = FamilyLockGuard(fake_provider(make_group("w", "m5.xlarge")))
        await guard.refresh()
        with pytest.raises(UnrecognizedFormatError):
            await guard.validate_scale_up("w", "")


class TestValidateAction:
    @pytest.mark.parametrize(
        "action",
        [NodeGroupAction.SCALE, NodeGroupAction.MODIFY_MIN, NodeGroupAction.MODIFY_MAX],
    )
    def test_allowed(self, action: NodeGroupAction):
        FamilyLockGuard(fake_provider()).validate_action(action)

    @pytest.mark.parametrize(
        ("action", "reason"),
        [
            (NodeGroupAction.CREATE, "creating new node groups"),
            (NodeGroupAction.CHANGE_TYPE, "changing node group instance type"),
            (NodeGroupAction.DELETE, "manual approval"),
        ],
    )
    def test_blocked(self, action: NodeGroupAction, reason: str):
        with pytest.raises(ActionNotAllowedError, match=reason) as exc_info:
            FamilyLockGuard(fake_provider()).validate_action(action)
        assert exc_info.value.action == action.value


async def test_allowed_sizes_delegate_to_provider():
    provider = fake_provider()
    sizes = [make_type("m5.large", 2, 8192), make_type("m5.xlarge", 4, 16384)]
    provider.get_family_sizes.return_value = sizes
    guard = FamilyLockGuard(provider)

    assert await guard.get_allowed_sizes("m5.large") == sizes
    provider.get_family_sizes.assert_awaited_once_with("m5.large")
