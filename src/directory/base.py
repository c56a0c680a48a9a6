"""
Directory Service Base - Abstract interface for directory backends.

The reconciler only talks to the directory through this interface, so it can
be pointed at Active Directory, or at an in-memory fake in tests and dry runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import escape_rdn, parse_dn

# Parsed, case-normalized distinguished name: (("cn", "pc01"), ("ou", "x"), ...)
Identity = Tuple[Tuple[str, str], ...]


class DirectoryError(Exception):
    """A directory read or write operation failed."""


class ConnectionFailedError(DirectoryError):
    """The directory could not be reached or the bind was rejected."""


class GroupExistsError(DirectoryError):
    """A group with the requested name already exists in the container."""


def normalize_dn(dn: str) -> Identity:
    """
    Parse a distinguished name into a comparable identity value.

    Attribute types and values are lower-cased and whitespace around the
    separators is dropped, so ``CN=PC01, OU=Computers`` and
    ``cn=pc01,ou=computers`` compare equal.

    Args:
        dn: The distinguished name string.

    Returns:
        Tuple of ``(attribute, value)`` pairs.

    Raises:
        DirectoryError: If the DN cannot be parsed.
    """
    try:
        components = parse_dn(dn, escape=False, strip=True)
    except LDAPInvalidDnError as e:
        raise DirectoryError(f"Invalid distinguished name '{dn}': {e}") from e
    return tuple((attr.lower(), value.lower()) for attr, value, _ in components)


def group_dn(name: str, container: str) -> str:
    """Distinguished name of a group created directly under a container."""
    return f"CN={escape_rdn(name)},{container}"


@dataclass(frozen=True)
class ComputerObject:
    """A computer account as read from the directory."""

    name: str
    distinguished_name: str
    enabled: bool = True
    operating_system: str = ""
    object_guid: Optional[str] = None

    @property
    def identity(self) -> Identity:
        return normalize_dn(self.distinguished_name)


@dataclass(frozen=True)
class GroupObject:
    """A group and the identities of its direct members."""

    name: str
    distinguished_name: str
    members: FrozenSet[Identity] = field(default_factory=frozenset)

    def has_member(self, computer: ComputerObject) -> bool:
        """Check membership by structured identity, not by short name."""
        return computer.identity in self.members

    @classmethod
    def from_member_dns(
        cls, name: str, distinguished_name: str, member_dns: List[str]
    ) -> "GroupObject":
        """Build a group from the raw ``member`` attribute values."""
        return cls(
            name=name,
            distinguished_name=distinguished_name,
            members=frozenset(normalize_dn(dn) for dn in member_dns),
        )


class DirectoryService(ABC):
    """
    Abstract base class for directory backends.

    Implementations read computer and group objects and mutate group
    membership. Methods raise DirectoryError (or a subclass) on failure;
    the reconciler decides what a failure means for the run.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this backend (e.g., 'ldap')."""
        pass

    @abstractmethod
    def find_computers(
        self, name_pattern: str = "*", os_prefix: Optional[str] = None
    ) -> List[ComputerObject]:
        """
        Find computer objects, enabled and disabled alike.

        Args:
            name_pattern: Name filter, ``*`` wildcards allowed.
            os_prefix: Only return computers whose operating system starts
                with this value. None means no filter.

        Returns:
            List of ComputerObject.
        """
        pass

    @abstractmethod
    def find_group(self, name: str, container: str) -> Optional[GroupObject]:
        """
        Look up a group by exact name among the direct children of a container.

        Args:
            name: The group name.
            container: Distinguished name of the container.

        Returns:
            The GroupObject with its members, or None if not found.
        """
        pass

    @abstractmethod
    def list_groups(self, container: str) -> List[GroupObject]:
        """
        List all groups that are direct children of a container.

        Args:
            container: Distinguished name of the container.

        Returns:
            List of GroupObject with their members.
        """
        pass

    @abstractmethod
    def create_group(
        self,
        name: str,
        display_name: str,
        description: str,
        container: str,
    ) -> GroupObject:
        """
        Create a global security group under a container.

        Args:
            name: The group name.
            display_name: Value for the display name attribute.
            description: Value for the description attribute.
            container: Distinguished name of the container.

        Returns:
            The new GroupObject (no members).

        Raises:
            GroupExistsError: If the name is already taken.
        """
        pass

    @abstractmethod
    def add_member(self, group: GroupObject, computer: ComputerObject) -> bool:
        """
        Add a computer to a group.

        Returns:
            True once the computer is a member.
        """
        pass

    @abstractmethod
    def remove_member(self, group: GroupObject, computer: ComputerObject) -> bool:
        """
        Remove a computer from a group.

        Removing a computer that is not a member is not an error.

        Returns:
            True once the computer is not a member.
        """
        pass

    @abstractmethod
    def container_exists(self, container: str) -> bool:
        """Check that a container (OU) exists."""
        pass

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DirectoryService":
        """
        Build the backend from a directory config dict.

        Override this method in subclasses; the registry calls it to
        instantiate the configured backend.
        """
        raise NotImplementedError(f"{cls.__name__} cannot be built from config")

    def close(self) -> None:
        """Release connections. The default implementation does nothing."""
        return None
