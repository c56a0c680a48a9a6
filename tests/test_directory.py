"""Unit tests for directory/base.py and directory/memory.py."""

import pytest

from conftest import CONTAINER, computer_dn, make_computer
from directory.base import (
    ComputerObject,
    DirectoryError,
    DirectoryService,
    GroupExistsError,
    GroupObject,
    group_dn,
    normalize_dn,
)
from directory.memory import InMemoryDirectory


class TestNormalizeDn:
    """Tests for structured DN identity."""

    def test_case_and_spacing_ignored(self):
        assert normalize_dn("CN=PC01, OU=Computers,DC=example, DC=com") == normalize_dn(
            "cn=pc01,ou=computers,dc=example,dc=com"
        )

    def test_different_containers_differ(self):
        assert normalize_dn("CN=PC01,OU=A,DC=example,DC=com") != normalize_dn(
            "CN=PC01,OU=B,DC=example,DC=com"
        )

    def test_components(self):
        assert normalize_dn("CN=PC01,DC=com") == (("cn", "pc01"), ("dc", "com"))

    def test_invalid_dn_raises(self):
        with pytest.raises(DirectoryError):
            normalize_dn("not a dn")

    def test_group_dn_escapes_name(self):
        assert group_dn("Servers, Tier 1", CONTAINER) == (
            f"CN=Servers\\, Tier 1,{CONTAINER}"
        )


class TestGroupObject:
    """Tests for membership checks on GroupObject."""

    def test_has_member_by_identity(self):
        group = GroupObject.from_member_dns(
            "Servers",
            group_dn("Servers", CONTAINER),
            ["cn=srv01,ou=computers,dc=example,dc=com"],
        )
        assert group.has_member(make_computer("SRV01"))

    def test_same_name_other_container_is_not_member(self):
        group = GroupObject.from_member_dns(
            "Servers",
            group_dn("Servers", CONTAINER),
            [computer_dn("SRV01", "OU=Lab,DC=example,DC=com")],
        )
        assert not group.has_member(make_computer("SRV01"))


class TestDirectoryService:
    """Tests for the DirectoryService abstract base class."""

    def test_cannot_instantiate_abstract(self):
        with pytest.raises(TypeError):
            DirectoryService()


class TestInMemoryDirectory:
    """Tests for the in-memory backend."""

    def test_container_exists(self, directory):
        assert directory.container_exists(CONTAINER)
        assert directory.container_exists(CONTAINER.lower())
        assert not directory.container_exists("OU=Missing,DC=example,DC=com")

    def test_find_computers_includes_disabled(self, directory):
        names = {c.name for c in directory.find_computers()}
        assert names == {"PC01", "PC02", "SRV01", "PC03", "LNX01"}

    def test_find_computers_name_pattern(self, directory):
        names = {c.name for c in directory.find_computers(name_pattern="pc*")}
        assert names == {"PC01", "PC02", "PC03"}

    def test_find_computers_os_prefix(self, directory):
        names = {c.name for c in directory.find_computers(os_prefix="windows server")}
        assert names == {"SRV01"}

    def test_create_and_find_group(self, directory):
        created = directory.create_group("Servers", "Servers", "desc", CONTAINER)
        found = directory.find_group("servers", CONTAINER)
        assert found == created
        assert found.members == frozenset()
        assert directory.mutations == [("create_group", "Servers", None)]

    def test_find_group_is_scoped_to_container(self, directory):
        directory.add_group("Servers", "OU=Other,DC=example,DC=com")
        assert directory.find_group("Servers", CONTAINER) is None

    def test_create_existing_group_raises(self, directory):
        directory.add_group("Servers", CONTAINER)
        with pytest.raises(GroupExistsError):
            directory.create_group("Servers", "Servers", "", CONTAINER)

    def test_add_member(self, directory):
        group = directory.add_group("Servers", CONTAINER)
        srv = make_computer("SRV01", "Windows Server 2019 Standard")
        assert directory.add_member(group, srv) is True
        assert directory.find_group("Servers", CONTAINER).has_member(srv)

    def test_remove_member_twice_is_safe(self, directory):
        srv = make_computer("SRV01", "Windows Server 2019 Standard")
        group = directory.add_group("Servers", CONTAINER, [srv.distinguished_name])

        assert directory.remove_member(group, srv) is True
        assert directory.remove_member(group, srv) is True
        assert directory.find_group("Servers", CONTAINER).members == frozenset()

    def test_injected_failure(self, directory):
        group = directory.add_group("Servers", CONTAINER)
        directory.fail_on.add(("add_member", "SRV01"))
        with pytest.raises(DirectoryError):
            directory.add_member(group, make_computer("SRV01"))
        assert directory.mutations == []

    def test_list_groups(self, directory):
        directory.add_group("Servers", CONTAINER)
        directory.add_group("Workstations", CONTAINER)
        directory.add_group("Elsewhere", "OU=Other,DC=example,DC=com")
        names = sorted(g.name for g in directory.list_groups(CONTAINER))
        assert names == ["Servers", "Workstations"]

    def test_from_snapshot(self):
        directory = InMemoryDirectory.from_snapshot(
            {
                "containers": [CONTAINER],
                "computers": [
                    {
                        "name": "PC01",
                        "distinguished_name": computer_dn("PC01"),
                        "operating_system": "Windows 11 Pro",
                    },
                    {
                        "name": "PC02",
                        "distinguished_name": computer_dn("PC02"),
                        "enabled": False,
                        "operating_system": None,
                    },
                ],
                "groups": [
                    {
                        "name": "Workstations",
                        "container": CONTAINER,
                        "members": [computer_dn("PC01")],
                    }
                ],
            }
        )
        computers = {c.name: c for c in directory.find_computers()}
        assert computers["PC01"].enabled is True
        assert computers["PC02"].enabled is False
        assert computers["PC02"].operating_system == ""
        group = directory.find_group("Workstations", CONTAINER)
        assert group.has_member(computers["PC01"])

    def test_from_config_requires_snapshot_file(self):
        with pytest.raises(ValueError):
            InMemoryDirectory.from_config({})

    def test_from_config_reads_yaml(self, tmp_path):
        snapshot = tmp_path / "snapshot.yaml"
        snapshot.write_text(
            f"containers: ['{CONTAINER}']\n"
            "computers:\n"
            "  - name: PC01\n"
            f"    distinguished_name: '{computer_dn('PC01')}'\n"
            "    operating_system: Windows 11 Pro\n"
        )
        directory = InMemoryDirectory.from_config({"snapshot_file": str(snapshot)})
        assert [c.name for c in directory.find_computers()] == ["PC01"]
        assert directory.container_exists(CONTAINER)


class TestComputerObject:
    """Tests for ComputerObject."""

    def test_identity_uses_dn(self):
        computer = ComputerObject(name="PC01", distinguished_name=computer_dn("PC01"))
        assert computer.identity == normalize_dn(computer_dn("PC01"))
        assert computer.enabled is True
        assert computer.operating_system == ""
