"""Family lock: no scaling action may change a node group's hardware family.

The guard keeps a snapshot of discovered node groups and checks every
proposed instance type against the group's current family. Structural
actions (creating groups, changing their type, deleting them) are blocked
by a fixed table.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from fleetward.errors import ActionNotAllowedError, FamilyMismatchError, UnknownNodeGroupError
from fleetward.family import extract_family, same_family
from fleetward.infra.locks import RWLock
from fleetward.types import InstanceType, NodeGroup

if TYPE_CHECKING:
    from fleetward.providers.provider import CloudProvider

log = logger.bind(component="family-lock")


class NodeGroupAction(Enum):
    SCALE = "scale"
    CREATE = "create"
    DELETE = "delete"
    MODIFY_MIN = "modify-min"
    MODIFY_MAX = "modify-max"
    CHANGE_TYPE = "change-type"


_BLOCKED: dict[NodeGroupAction, str] = {
    NodeGroupAction.CREATE: "creating new node groups is not allowed",
    NodeGroupAction.CHANGE_TYPE: "changing node group instance type is not allowed",
    NodeGroupAction.DELETE: "deleting node groups requires manual approval",
}


class FamilyLockGuard:
    """Cached node-group view that validates actions against the family lock.

    Example:
        guard = FamilyLockGuard(provider)
        await guard.refresh()
        await guard.validate_scale_up("eks-workers", "m5.2xlarge")
    """

    def __init__(self, provider: CloudProvider) -> None:
        self._provider = provider
        self._groups: dict[str, NodeGroup] = {}
        self._lock = RWLock()

    async def refresh(self) -> None:
        """Rediscover node groups and replace the snapshot wholesale."""
        groups = await self._provider.discover_node_groups()
        snapshot = {group.id: group for group in groups}
        async with self._lock.write():
            self._groups = snapshot
        log.debug("Family lock snapshot refreshed: {n} node groups", n=len(snapshot))

    async def _lookup(self, group_id: str) -> NodeGroup | None:
        async with self._lock.read():
            return self._groups.get(group_id)

    async def validate_scale_up(self, group_id: str, proposed_type: str) -> None:
        """Raise unless ``proposed_type`` keeps ``group_id`` in its current family.

        A group missing from the snapshot triggers one refresh, since it may
        have been created after the last discovery.

        Raises
        ------
        UnknownNodeGroupError
            The group is still unknown after the refresh.
        FamilyMismatchError
            The proposed type belongs to a different family.
        UnrecognizedFormatError
            Either instance type cannot be parsed.
        """
        group = await self._lookup(group_id)
        if group is None:
            try:
                await self.refresh()
            except Exception as e:
                log.warning(
                    "Family lock refresh failed group={group} operation=validate_scale_up: {err}",
                    group=group_id, err=e,
                )
            group = await self._lookup(group_id)
            if group is None:
                raise UnknownNodeGroupError(group_id)

        current_family = extract_family(group.instance_type)
        proposed_family = extract_family(proposed_type)
        if not same_family(current_family, proposed_family):
            log.warning(
                "Blocked family change {current} -> {proposed} in {group}",
                current=current_family, proposed=proposed_family, group=group_id,
            )
            raise FamilyMismatchError(group_id, current_family, proposed_family)

    def validate_action(self, action: NodeGroupAction) -> None:
        if reason := _BLOCKED.get(action):
            raise ActionNotAllowedError(action.value, reason)

    async def get_allowed_sizes(self, instance_type: str) -> Sequence[InstanceType]:
        return await self._provider.get_family_sizes(instance_type)

    async def get_node_group(self, group_id: str) -> NodeGroup | None:
        return await self._lookup(group_id)

    async def get_all_node_groups(self) -> list[NodeGroup]:
        async with self._lock.read():
            return list(self._groups.values())


__all__ = ["FamilyLockGuard", "NodeGroupAction"]
