"""Pytest configuration and fixtures."""

import pytest

import config
from directory.base import ComputerObject
from directory.memory import InMemoryDirectory
from directory.registry import reset_registry
from resolution import StaticResolver

CONTAINER = "OU=OS Groups,OU=Groups,DC=example,DC=com"
COMPUTERS_OU = "OU=Computers,DC=example,DC=com"


def computer_dn(name: str, ou: str = COMPUTERS_OU) -> str:
    return f"CN={name},{ou}"


def make_computer(
    name: str, operating_system: str = "Windows 11 Pro", enabled: bool = True
) -> ComputerObject:
    return ComputerObject(
        name=name,
        distinguished_name=computer_dn(name),
        enabled=enabled,
        operating_system=operating_system,
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset module-level singletons between tests."""
    config.reset_config()
    reset_registry()
    yield
    config.reset_config()
    reset_registry()


@pytest.fixture
def container():
    return CONTAINER


@pytest.fixture
def static_resolver():
    """Rule set where a server OS matches both rules."""
    return StaticResolver.from_pairs(
        [("Workstations", r"Windows \d\d"), ("Servers", "Server")]
    )


@pytest.fixture
def directory():
    """Directory with an existing container and a mix of computers."""
    return InMemoryDirectory(
        computers=[
            make_computer("PC01", "Windows 11 Pro"),
            make_computer("PC02", "Windows 10 Enterprise"),
            make_computer("SRV01", "Windows Server 2019 Standard"),
            make_computer("PC03", "Windows 10 Pro", enabled=False),
            make_computer("LNX01", "Linux"),
        ],
        containers=[CONTAINER],
    )


@pytest.fixture
def sample_config_document():
    """Sample static-mode config document."""
    return {
        "directory": {
            "backend": "ldap",
            "server": "dc01.example.com",
            "base_dn": "DC=example,DC=com",
        },
        "sync": {
            "container": CONTAINER,
            "mode": "static",
            "rules": [
                {"group": "Workstations", "pattern": r"Windows \d\d"},
                {"group": "Servers", "pattern": "Server"},
            ],
        },
        "logging": {"level": "INFO"},
    }
