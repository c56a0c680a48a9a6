"""
In-memory directory backend.

Holds computers, containers and groups in plain dicts. Used by the test suite
and for offline dry runs against a YAML snapshot of a real directory.
"""

import fnmatch
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml

from directory.base import (
    ComputerObject,
    DirectoryError,
    DirectoryService,
    GroupExistsError,
    GroupObject,
    Identity,
    group_dn,
    normalize_dn,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoredGroup:
    name: str
    distinguished_name: str
    container: Identity
    display_name: str = ""
    description: str = ""
    members: Set[Identity] = field(default_factory=set)

    def snapshot(self) -> GroupObject:
        return GroupObject(
            name=self.name,
            distinguished_name=self.distinguished_name,
            members=frozenset(self.members),
        )


class InMemoryDirectory(DirectoryService):
    """
    Directory backend backed by in-memory dicts.

    Every write is appended to ``mutations`` as ``(operation, group, computer)``
    so callers can assert on exactly what a run did. ``fail_on`` holds
    ``(operation, name)`` pairs that raise DirectoryError when hit, where
    ``name`` is a group name for create_group and a computer name for
    add_member / remove_member.
    """

    def __init__(
        self,
        computers: Optional[List[ComputerObject]] = None,
        containers: Optional[List[str]] = None,
    ):
        self._computers: Dict[Identity, ComputerObject] = {}
        self._containers: Set[Identity] = set()
        self._groups: Dict[Tuple[Identity, str], _StoredGroup] = {}
        self.mutations: List[Tuple[str, str, Optional[str]]] = []
        self.fail_on: Set[Tuple[str, str]] = set()

        for container in containers or []:
            self.add_container(container)
        for computer in computers or []:
            self.add_computer(computer)

    @property
    def name(self) -> str:
        return "memory"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "InMemoryDirectory":
        """Build the backend from a directory config dict with a snapshot_file."""
        path = config.get("snapshot_file")
        if not path:
            raise ValueError("The memory backend requires snapshot_file")
        with open(path, "r") as f:
            return cls.from_snapshot(yaml.safe_load(f) or {})

    # Seeding

    def add_container(self, container: str) -> None:
        self._containers.add(normalize_dn(container))

    def add_computer(self, computer: ComputerObject) -> None:
        self._computers[computer.identity] = computer

    def add_group(
        self, name: str, container: str, member_dns: Optional[List[str]] = None
    ) -> GroupObject:
        """Seed a group without recording a mutation."""
        stored = self._store_group(name, container)
        stored.members.update(normalize_dn(dn) for dn in member_dns or [])
        return stored.snapshot()

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "InMemoryDirectory":
        """
        Build a directory from a snapshot document.

        Expected shape::

            containers: ["OU=Groups,DC=example,DC=com"]
            computers:
              - name: PC01
                distinguished_name: CN=PC01,OU=Computers,DC=example,DC=com
                enabled: true
                operating_system: Windows 11 Pro
            groups:
              - name: Workstations
                container: OU=Groups,DC=example,DC=com
                members: [CN=PC01,OU=Computers,DC=example,DC=com]
        """
        directory = cls(containers=data.get("containers", []))
        for entry in data.get("computers", []):
            directory.add_computer(
                ComputerObject(
                    name=entry["name"],
                    distinguished_name=entry["distinguished_name"],
                    enabled=entry.get("enabled", True),
                    operating_system=entry.get("operating_system") or "",
                    object_guid=entry.get("object_guid"),
                )
            )
        for entry in data.get("groups", []):
            directory.add_group(
                entry["name"], entry["container"], entry.get("members", [])
            )
        return directory

    def _store_group(self, name: str, container: str) -> _StoredGroup:
        container_id = normalize_dn(container)
        key = (container_id, name.lower())
        if key not in self._groups:
            self._containers.add(container_id)
            self._groups[key] = _StoredGroup(
                name=name,
                distinguished_name=group_dn(name, container),
                container=container_id,
            )
        return self._groups[key]

    def _lookup(self, group: GroupObject) -> _StoredGroup:
        identity = normalize_dn(group.distinguished_name)
        for stored in self._groups.values():
            if normalize_dn(stored.distinguished_name) == identity:
                return stored
        raise DirectoryError(f"No such group: {group.distinguished_name}")

    def _check_failure(self, operation: str, name: str) -> None:
        if (operation, name) in self.fail_on:
            raise DirectoryError(f"Injected failure: {operation} {name}")

    # DirectoryService

    def find_computers(
        self, name_pattern: str = "*", os_prefix: Optional[str] = None
    ) -> List[ComputerObject]:
        pattern = name_pattern.lower()
        prefix = os_prefix.lower() if os_prefix else None
        results = []
        for computer in self._computers.values():
            if not fnmatch.fnmatchcase(computer.name.lower(), pattern):
                continue
            if prefix and not computer.operating_system.lower().startswith(prefix):
                continue
            results.append(computer)
        return results

    def find_group(self, name: str, container: str) -> Optional[GroupObject]:
        stored = self._groups.get((normalize_dn(container), name.lower()))
        return stored.snapshot() if stored else None

    def list_groups(self, container: str) -> List[GroupObject]:
        container_id = normalize_dn(container)
        return [
            stored.snapshot()
            for stored in self._groups.values()
            if stored.container == container_id
        ]

    def create_group(
        self,
        name: str,
        display_name: str,
        description: str,
        container: str,
    ) -> GroupObject:
        self._check_failure("create_group", name)
        if (normalize_dn(container), name.lower()) in self._groups:
            raise GroupExistsError(f"Group '{name}' already exists in {container}")

        stored = self._store_group(name, container)
        stored.display_name = display_name
        stored.description = description
        self.mutations.append(("create_group", name, None))
        logger.debug(f"Created group {stored.distinguished_name}")
        return stored.snapshot()

    def add_member(self, group: GroupObject, computer: ComputerObject) -> bool:
        self._check_failure("add_member", computer.name)
        stored = self._lookup(group)
        stored.members.add(computer.identity)
        self.mutations.append(("add_member", stored.name, computer.name))
        return True

    def remove_member(self, group: GroupObject, computer: ComputerObject) -> bool:
        self._check_failure("remove_member", computer.name)
        stored = self._lookup(group)
        stored.members.discard(computer.identity)
        self.mutations.append(("remove_member", stored.name, computer.name))
        return True

    def container_exists(self, container: str) -> bool:
        return normalize_dn(container) in self._containers
