"""
Group Resolution - Decide which managed group a computer belongs in.

Two policies exist:

- Static: an ordered list of (group name, regex) rules. Every rule is
  evaluated and the LAST matching rule wins, so later entries override
  earlier ones. ``MatchPrecedence.FIRST`` is available for deployments that
  explicitly want the opposite.
- Dynamic: one group per distinct operating-system string, named after the
  string itself with an optional site prefix.

Resolvers are pure: they take an operating-system string and return a group
name or None. They never touch the directory.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Sequence, Set, Tuple

# Characters Active Directory does not accept in group names
_INVALID_NAME_CHARS = re.compile(r'["/\\\[\]:;|=,+*?<>]')

# Upper bound for the cn attribute
MAX_GROUP_NAME_LENGTH = 64

# Leaves room for the separating space and the operating system
MAX_SITE_PREFIX_LENGTH = 60


class MatchPrecedence(Enum):
    """Which matching rule decides when several rules match."""

    LAST = "last"
    FIRST = "first"


@dataclass(frozen=True)
class GroupSpec:
    """
    A candidate target group.

    Exactly one of ``pattern`` (regex search) or ``literal`` (exact
    operating-system value) is set.
    """

    name: str
    pattern: Optional[Pattern[str]] = None
    literal: Optional[str] = None

    def matches(self, operating_system: str) -> bool:
        if self.pattern is not None:
            return self.pattern.search(operating_system) is not None
        return self.literal == operating_system

    @classmethod
    def from_pattern(cls, name: str, pattern: str) -> "GroupSpec":
        """
        Build a static rule.

        Raises:
            ValueError: If the pattern is not a valid regular expression.
        """
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid pattern for group '{name}': {e}") from e
        return cls(name=name, pattern=compiled)


def sanitize_group_name(name: str) -> str:
    """Replace characters AD rejects and cut the name to the cn length limit."""
    cleaned = _INVALID_NAME_CHARS.sub("_", name).strip()
    return cleaned[:MAX_GROUP_NAME_LENGTH].rstrip()


def resolve_static(
    operating_system: str,
    rules: Sequence[GroupSpec],
    precedence: MatchPrecedence = MatchPrecedence.LAST,
) -> Optional[str]:
    """
    Evaluate an ordered rule list against an operating-system string.

    With ``MatchPrecedence.LAST`` every rule is evaluated and each match
    overwrites the previous one.

    Args:
        operating_system: The computer's operatingSystem value.
        rules: Ordered static rules.
        precedence: Which match wins when several rules match.

    Returns:
        The winning group name, or None if no rule matched.
    """
    resolved = None
    for rule in rules:
        if rule.matches(operating_system):
            resolved = rule.name
            if precedence is MatchPrecedence.FIRST:
                break
    return resolved


def derive_group_name(operating_system: str, site_prefix: str = "") -> Optional[str]:
    """
    Derive the dynamic-mode group name for an operating-system string.

    Returns:
        ``"<site_prefix> <operating system>"`` (sanitized), or None for an
        empty operating system.
    """
    operating_system = operating_system.strip()
    if not operating_system:
        return None
    name = f"{site_prefix} {operating_system}" if site_prefix else operating_system
    return sanitize_group_name(name)


class GroupResolver(ABC):
    """Maps operating-system strings to managed group names."""

    @abstractmethod
    def resolve(self, operating_system: str) -> Optional[str]:
        """Return the target group name, or None if unresolved."""
        pass

    @abstractmethod
    def is_managed(self, group_name: str) -> bool:
        """Check whether a group's membership is owned by this resolver."""
        pass

    def fixed_group_names(self) -> Optional[List[str]]:
        """
        Names of all managed groups when they are known up front.

        None means the managed set has to be discovered from the container.
        """
        return None


class StaticResolver(GroupResolver):
    """Resolves against a fixed, ordered list of pattern rules."""

    def __init__(
        self,
        rules: Sequence[GroupSpec],
        precedence: MatchPrecedence = MatchPrecedence.LAST,
    ):
        self.rules = list(rules)
        self.precedence = precedence
        self._names: Set[str] = {rule.name.lower() for rule in self.rules}

    @classmethod
    def from_pairs(
        cls,
        pairs: Sequence[Tuple[str, str]],
        precedence: MatchPrecedence = MatchPrecedence.LAST,
    ) -> "StaticResolver":
        """Build from ``(group name, pattern)`` pairs."""
        return cls(
            [GroupSpec.from_pattern(name, pattern) for name, pattern in pairs],
            precedence,
        )

    def resolve(self, operating_system: str) -> Optional[str]:
        return resolve_static(operating_system, self.rules, self.precedence)

    def is_managed(self, group_name: str) -> bool:
        return group_name.lower() in self._names

    def fixed_group_names(self) -> Optional[List[str]]:
        names: List[str] = []
        for rule in self.rules:
            if rule.name.lower() not in {n.lower() for n in names}:
                names.append(rule.name)
        return names


class DynamicResolver(GroupResolver):
    """
    One group per distinct operating-system string.

    With a site prefix, every group in the container whose name starts with
    the prefix is managed. Without one, the container is dedicated to this
    sync and every group in it is managed.
    """

    def __init__(self, site_prefix: str = ""):
        site_prefix = site_prefix.strip()
        if len(site_prefix) > MAX_SITE_PREFIX_LENGTH:
            raise ValueError(
                f"Site prefix is longer than {MAX_SITE_PREFIX_LENGTH} characters: "
                f"{site_prefix!r}"
            )
        self.site_prefix = site_prefix

    def resolve(self, operating_system: str) -> Optional[str]:
        return derive_group_name(operating_system, self.site_prefix)

    def is_managed(self, group_name: str) -> bool:
        if not self.site_prefix:
            return True
        prefix = f"{sanitize_group_name(self.site_prefix)} "
        return group_name.lower().startswith(prefix.lower())

