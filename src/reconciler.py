"""
Group Membership Reconciler.

Each run re-reads the directory, decides the target group of every computer,
and issues the smallest set of writes that converges membership:

    Unevaluated --(rule matches)--> Matched
    Unevaluated --(no rule)------> Unmatched
    Matched  + enabled   -> ensure member of target, absent from other managed groups
    Matched  + disabled  -> ensure absent from every managed group
    Unmatched            -> diagnostic, no writes

Nothing is kept between runs. A write that fails is logged and recorded, and
the run moves on; the next scheduled run picks up whatever was left.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from directory.base import (
    ComputerObject,
    DirectoryError,
    DirectoryService,
    GroupExistsError,
    GroupObject,
    Identity,
)
from report import (
    Diagnostic,
    Mutation,
    MutationResult,
    MutationType,
    Outcome,
    RunReport,
)
from resolution import GroupResolver

logger = logging.getLogger(__name__)

DEFAULT_GROUP_DESCRIPTION = "Computers synchronized into {name} by groupsync"


@dataclass
class DirectorySnapshot:
    """Computers and managed groups as read at the start of a run."""

    computers: List[ComputerObject] = field(default_factory=list)
    groups: List[GroupObject] = field(default_factory=list)

    def groups_by_key(self) -> Dict[str, GroupObject]:
        return {group.name.lower(): group for group in self.groups}


@dataclass
class Plan:
    """Mutations and diagnostics produced from a snapshot."""

    mutations: List[Mutation] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


def plan(snapshot: DirectorySnapshot, resolver: GroupResolver) -> Plan:
    """
    Compute the writes that converge a snapshot to its desired membership.

    Pure function: no directory access. Membership is tracked as the plan
    goes, so a group created for one computer is reused for the next and no
    write is planned twice.

    Args:
        snapshot: Computers and the managed groups that currently exist.
        resolver: Decides the target group for an operating-system string.

    Returns:
        A Plan with ordered mutations (a group's creation always precedes
        the additions to it) and diagnostics for unresolved computers.
    """
    result = Plan()
    names: Dict[str, str] = {}
    membership: Dict[str, Set[Identity]] = {}
    for group in snapshot.groups:
        key = group.name.lower()
        names[key] = group.name
        membership[key] = set(group.members)

    for computer in sorted(snapshot.computers, key=lambda c: c.name.lower()):
        identity = computer.identity
        target = resolver.resolve(computer.operating_system)
        current = [key for key, members in membership.items() if identity in members]

        if not computer.enabled:
            for key in current:
                result.mutations.append(
                    Mutation(
                        MutationType.REMOVE_MEMBER,
                        names[key],
                        computer,
                        reason="computer is disabled",
                    )
                )
                membership[key].discard(identity)
            continue

        if target is None:
            os_label = computer.operating_system or "(empty)"
            result.diagnostics.append(
                Diagnostic(
                    computer_name=computer.name,
                    operating_system=computer.operating_system,
                    message=f"No group matches operating system '{os_label}'",
                )
            )
            continue

        target_key = target.lower()
        if target_key not in membership:
            result.mutations.append(
                Mutation(
                    MutationType.CREATE_GROUP,
                    target,
                    reason=f"first computer running {computer.operating_system}",
                )
            )
            names[target_key] = target
            membership[target_key] = set()

        if identity not in membership[target_key]:
            result.mutations.append(
                Mutation(
                    MutationType.ADD_MEMBER,
                    names[target_key],
                    computer,
                    reason=f"operating system '{computer.operating_system}'",
                )
            )
            membership[target_key].add(identity)

        for key in current:
            if key == target_key:
                continue
            result.mutations.append(
                Mutation(
                    MutationType.REMOVE_MEMBER,
                    names[key],
                    computer,
                    reason=f"computer now belongs in {names[target_key]}",
                )
            )
            membership[key].discard(identity)

    return result


def ensure_group(
    directory: DirectoryService,
    name: str,
    container: str,
    description: str = "",
) -> GroupObject:
    """
    Return the named group from the container, creating it if absent.

    An existing group is returned untouched. If another writer creates the
    group between the lookup and the create, the conflict is resolved by
    fetching the winner's group.

    Raises:
        DirectoryError: If the group can be neither found nor created.
    """
    group = directory.find_group(name, container)
    if group is not None:
        return group

    try:
        group = directory.create_group(
            name=name,
            display_name=name,
            description=description,
            container=container,
        )
        logger.info(f"Created group {name} in {container}")
        return group
    except GroupExistsError:
        logger.info(f"Group {name} was created concurrently, re-fetching")

    group = directory.find_group(name, container)
    if group is None:
        raise DirectoryError(f"Group {name} reported as existing but was not found")
    return group


class Reconciler:
    """
    Converges managed group membership in one container.

    Example:
        reconciler = Reconciler(directory, StaticResolver(rules), container)
        report = reconciler.run()
    """

    def __init__(
        self,
        directory: DirectoryService,
        resolver: GroupResolver,
        container: str,
        name_pattern: str = "*",
        os_prefix: Optional[str] = None,
        group_description: str = DEFAULT_GROUP_DESCRIPTION,
        mode: str = "static",
    ):
        self.directory = directory
        self.resolver = resolver
        self.container = container
        self.name_pattern = name_pattern
        self.os_prefix = os_prefix
        self.group_description = group_description
        self.mode = mode

    def read_snapshot(self) -> DirectorySnapshot:
        """Read computers and the managed groups that currently exist."""
        computers = self.directory.find_computers(
            name_pattern=self.name_pattern, os_prefix=self.os_prefix
        )

        fixed_names = self.resolver.fixed_group_names()
        if fixed_names is None:
            groups = [
                group
                for group in self.directory.list_groups(self.container)
                if self.resolver.is_managed(group.name)
            ]
        else:
            groups = []
            for name in fixed_names:
                group = self.directory.find_group(name, self.container)
                if group is not None:
                    groups.append(group)

        logger.info(
            f"Read {len(computers)} computers and {len(groups)} managed groups "
            f"from {self.container}"
        )
        return DirectorySnapshot(computers=computers, groups=groups)

    def _describe_group(self, name: str) -> str:
        return self.group_description.format(name=name)

    def apply(
        self, mutations: List[Mutation], snapshot: DirectorySnapshot
    ) -> List[MutationResult]:
        """
        Execute planned mutations, continuing past failures.

        Mutations against a group whose creation failed are skipped.
        """
        handles = snapshot.groups_by_key()
        failed_groups: Set[str] = set()
        results = []

        for mutation in mutations:
            key = mutation.group_name.lower()
            if mutation.type is not MutationType.CREATE_GROUP and key in failed_groups:
                results.append(
                    MutationResult(
                        mutation,
                        Outcome.SKIPPED,
                        f"group {mutation.group_name} could not be created",
                    )
                )
                continue

            try:
                if mutation.type is MutationType.CREATE_GROUP:
                    handles[key] = ensure_group(
                        self.directory,
                        mutation.group_name,
                        self.container,
                        self._describe_group(mutation.group_name),
                    )
                elif mutation.type is MutationType.ADD_MEMBER:
                    self.directory.add_member(handles[key], mutation.computer)
                    logger.info(
                        f"Added {mutation.computer_name} to {mutation.group_name}"
                    )
                else:
                    self.directory.remove_member(handles[key], mutation.computer)
                    logger.info(
                        f"Removed {mutation.computer_name} from {mutation.group_name}"
                    )
                results.append(MutationResult(mutation, Outcome.APPLIED))
            except Exception as e:
                logger.error(f"Failed to {mutation.describe()}: {e}")
                results.append(MutationResult(mutation, Outcome.FAILED, str(e)))
                if mutation.type is MutationType.CREATE_GROUP:
                    failed_groups.add(key)

        return results

    def run(self, dry_run: bool = False) -> RunReport:
        """
        Run one reconciliation pass.

        Never raises: a missing container skips the run, a read failure
        aborts it, and write failures are recorded per mutation.

        Args:
            dry_run: Plan only, do not write to the directory.

        Returns:
            RunReport describing what was planned and what happened.
        """
        report = RunReport(mode=self.mode, container=self.container, dry_run=dry_run)
        try:
            if not self.directory.container_exists(self.container):
                logger.info(f"Container {self.container} does not exist, skipping run")
                report.skipped = True
                report.skip_reason = f"container {self.container} does not exist"
                return report

            snapshot = self.read_snapshot()
            report.computers_evaluated = len(snapshot.computers)
            result = plan(snapshot, self.resolver)
            report.diagnostics = result.diagnostics

            for diagnostic in result.diagnostics:
                logger.warning(
                    f"Unresolved computer {diagnostic.computer_name}: "
                    f"{diagnostic.message}"
                )

            if dry_run:
                report.results = [
                    MutationResult(mutation, Outcome.PLANNED)
                    for mutation in result.mutations
                ]
                for mutation in result.mutations:
                    logger.info(f"Would {mutation.describe()}")
            else:
                report.results = self.apply(result.mutations, snapshot)

            logger.info(f"Reconciliation finished: {report.summary()}")
        except Exception as e:
            logger.error(f"Reconciliation run failed: {e}", exc_info=True)
            report.error = str(e)
        finally:
            report.finished_at = datetime.utcnow()

        return report

