"""
Active Directory backend.

Talks to a domain controller over LDAP with ldap3. Computer enumeration uses
a paged subtree search; group lookups are one-level searches in the managed
container. ``member`` values larger than the server's MaxValRange are fetched
with ldap3's automatic range retrieval.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from ldap3 import (
    BASE,
    LEVEL,
    MODIFY_ADD,
    MODIFY_DELETE,
    NONE,
    NTLM,
    SIMPLE,
    SUBTREE,
    Connection,
    Server,
)
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import (
    RESULT_ATTRIBUTE_OR_VALUE_EXISTS,
    RESULT_ENTRY_ALREADY_EXISTS,
    RESULT_NO_SUCH_ATTRIBUTE,
    RESULT_NO_SUCH_OBJECT,
    RESULT_SUCCESS,
    RESULT_UNWILLING_TO_PERFORM,
)
from ldap3.utils.conv import escape_filter_chars

from directory.base import (
    ComputerObject,
    ConnectionFailedError,
    DirectoryError,
    DirectoryService,
    GroupExistsError,
    GroupObject,
    group_dn,
)

logger = logging.getLogger(__name__)

# userAccountControl flag for a disabled account
ACCOUNTDISABLE = 0x0002

# groupType for a global security group
GLOBAL_SECURITY_GROUP = -2147483646

COMPUTER_ATTRIBUTES = [
    "name",
    "distinguishedName",
    "operatingSystem",
    "userAccountControl",
    "objectGUID",
]
GROUP_ATTRIBUTES = ["cn", "distinguishedName", "member"]


def _values(entry: Dict[str, Any], attribute: str) -> List[Any]:
    value = entry.get("attributes", {}).get(attribute)
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _first(entry: Dict[str, Any], attribute: str, default: Any = None) -> Any:
    values = _values(entry, attribute)
    return values[0] if values else default


def _wildcard_filter(pattern: str) -> str:
    """Escape a name pattern for a search filter, keeping ``*`` wildcards."""
    return "*".join(escape_filter_chars(part) for part in pattern.split("*"))


class ActiveDirectory(DirectoryService):
    """
    DirectoryService implementation for Active Directory.

    A user given as ``DOMAIN\\user`` binds with NTLM, anything else
    (``user@domain`` or a DN) with a simple bind.
    """

    def __init__(
        self,
        server: str,
        base_dn: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        port: Optional[int] = None,
        use_ssl: bool = True,
        page_size: int = 500,
        connect_timeout: int = 10,
        connection: Optional[Connection] = None,
    ):
        self.server = server
        self.base_dn = base_dn
        self.user = user
        self.password = password
        self.port = port
        self.use_ssl = use_ssl
        self.page_size = page_size
        self.connect_timeout = connect_timeout
        self._connection = connection

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ActiveDirectory":
        """
        Build the backend from a directory config dict.

        Raises:
            ValueError: If the server, base DN or bind password is missing.
        """
        if not config.get("server") or not config.get("base_dn"):
            raise ValueError("The ldap backend requires server and base_dn")
        if config.get("user") and not config.get("password"):
            raise ValueError(
                "LDAP_PASSWORD environment variable must be set. "
                "Directory password cannot be empty."
            )
        return cls(
            server=config["server"],
            base_dn=config["base_dn"],
            user=config.get("user") or None,
            password=config.get("password") or None,
            port=config.get("port"),
            use_ssl=config.get("use_ssl", True),
            page_size=config.get("page_size", 500),
            connect_timeout=config.get("connect_timeout", 10),
        )

    @property
    def name(self) -> str:
        return "ldap"

    @property
    def connection(self) -> Connection:
        if self._connection is None:
            self._connection = self.connect()
        return self._connection

    def connect(self) -> Connection:
        """
        Open and bind a connection to the domain controller.

        Returns:
            A bound ldap3 Connection.

        Raises:
            ConnectionFailedError: If the server is unreachable or the bind fails.
        """
        authentication = NTLM if self.user and "\\" in self.user else SIMPLE
        server = Server(
            self.server,
            port=self.port,
            use_ssl=self.use_ssl,
            get_info=NONE,
            connect_timeout=self.connect_timeout,
        )
        try:
            connection = Connection(
                server,
                user=self.user,
                password=self.password,
                authentication=authentication,
                auto_bind=True,
                raise_exceptions=False,
            )
        except LDAPException as e:
            raise ConnectionFailedError(
                f"Could not bind to {self.server} as {self.user}: {e}"
            ) from e

        logger.info(f"Connected to {self.server} as {self.user}")
        return connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.unbind()
            self._connection = None

    def _result_code(self) -> int:
        return self.connection.result.get("result", 0)

    def _result_description(self) -> str:
        result = self.connection.result
        description = result.get("description", "unknown error")
        message = result.get("message")
        return f"{description}: {message}" if message else description

    def _search(
        self, search_base: str, search_filter: str, scope: str, attributes: List[str]
    ) -> List[Dict[str, Any]]:
        try:
            ok = self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes,
            )
        except LDAPException as e:
            raise DirectoryError(f"Search under {search_base} failed: {e}") from e

        # search() is also falsy for an empty result (code 0)
        if not ok and self._result_code() not in (
            RESULT_SUCCESS,
            RESULT_NO_SUCH_OBJECT,
        ):
            raise DirectoryError(
                f"Search under {search_base} failed: {self._result_description()}"
            )
        return [
            entry
            for entry in self.connection.response or []
            if entry.get("type") == "searchResEntry"
        ]

    def _to_computer(self, entry: Dict[str, Any]) -> ComputerObject:
        uac = int(_first(entry, "userAccountControl", 0) or 0)
        raw_guid = entry.get("raw_attributes", {}).get("objectGUID") or []
        guid = str(uuid.UUID(bytes_le=raw_guid[0])) if raw_guid else None
        return ComputerObject(
            name=_first(entry, "name", ""),
            distinguished_name=entry["dn"],
            enabled=not uac & ACCOUNTDISABLE,
            operating_system=_first(entry, "operatingSystem", "") or "",
            object_guid=guid,
        )

    def _to_group(self, entry: Dict[str, Any]) -> GroupObject:
        return GroupObject.from_member_dns(
            name=_first(entry, "cn", ""),
            distinguished_name=entry["dn"],
            member_dns=[str(dn) for dn in _values(entry, "member")],
        )

    def find_computers(
        self, name_pattern: str = "*", os_prefix: Optional[str] = None
    ) -> List[ComputerObject]:
        search_filter = (
            f"(&(objectCategory=computer)(name={_wildcard_filter(name_pattern)})"
        )
        if os_prefix:
            search_filter += f"(operatingSystem={escape_filter_chars(os_prefix)}*)"
        search_filter += ")"

        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=self.base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=COMPUTER_ATTRIBUTES,
                paged_size=self.page_size,
                generator=False,
            )
        except LDAPException as e:
            raise DirectoryError(f"Computer search failed: {e}") from e

        computers = [
            self._to_computer(entry)
            for entry in entries or []
            if entry.get("type") == "searchResEntry"
        ]
        logger.debug(f"Found {len(computers)} computers matching {search_filter}")
        return computers

    def find_group(self, name: str, container: str) -> Optional[GroupObject]:
        entries = self._search(
            container,
            f"(&(objectClass=group)(cn={escape_filter_chars(name)}))",
            LEVEL,
            GROUP_ATTRIBUTES,
        )
        return self._to_group(entries[0]) if entries else None

    def list_groups(self, container: str) -> List[GroupObject]:
        entries = self._search(
            container, "(objectClass=group)", LEVEL, GROUP_ATTRIBUTES
        )
        return [self._to_group(entry) for entry in entries]

    def create_group(
        self,
        name: str,
        display_name: str,
        description: str,
        container: str,
    ) -> GroupObject:
        dn = group_dn(name, container)
        attributes = {
            "objectClass": ["top", "group"],
            "cn": name,
            "sAMAccountName": name,
            "displayName": display_name,
            "groupType": GLOBAL_SECURITY_GROUP,
        }
        if description:
            attributes["description"] = description

        try:
            ok = self.connection.add(dn, attributes=attributes)
        except LDAPException as e:
            raise DirectoryError(f"Could not create group {dn}: {e}") from e

        if not ok:
            if self._result_code() == RESULT_ENTRY_ALREADY_EXISTS:
                raise GroupExistsError(f"Group {dn} already exists")
            raise DirectoryError(
                f"Could not create group {dn}: {self._result_description()}"
            )

        logger.info(f"Created group {dn}")
        return GroupObject(name=name, distinguished_name=dn)

    def _modify_member(
        self,
        group: GroupObject,
        computer: ComputerObject,
        operation: str,
        tolerated: tuple,
    ) -> bool:
        try:
            ok = self.connection.modify(
                group.distinguished_name,
                {"member": [(operation, [computer.distinguished_name])]},
            )
        except LDAPException as e:
            raise DirectoryError(
                f"Could not update {group.name} for {computer.name}: {e}"
            ) from e

        if ok:
            return True
        if self._result_code() in tolerated:
            logger.debug(
                f"{computer.name} already in desired state for {group.name}: "
                f"{self._result_description()}"
            )
            return True
        raise DirectoryError(
            f"Could not update {group.name} for {computer.name}: "
            f"{self._result_description()}"
        )

    def add_member(self, group: GroupObject, computer: ComputerObject) -> bool:
        return self._modify_member(
            group,
            computer,
            MODIFY_ADD,
            (RESULT_ATTRIBUTE_OR_VALUE_EXISTS, RESULT_ENTRY_ALREADY_EXISTS),
        )

    def remove_member(self, group: GroupObject, computer: ComputerObject) -> bool:
        # AD answers unwillingToPerform when the value is not present
        return self._modify_member(
            group,
            computer,
            MODIFY_DELETE,
            (RESULT_NO_SUCH_ATTRIBUTE, RESULT_UNWILLING_TO_PERFORM),
        )

    def container_exists(self, container: str) -> bool:
        try:
            ok = self.connection.search(
                search_base=container,
                search_filter="(objectClass=*)",
                search_scope=BASE,
                attributes=[],
            )
        except LDAPException as e:
            raise DirectoryError(f"Could not read container {container}: {e}") from e

        if ok:
            return True
        if self._result_code() == RESULT_NO_SUCH_OBJECT:
            return False
        raise DirectoryError(
            f"Could not read container {container}: {self._result_description()}"
        )
