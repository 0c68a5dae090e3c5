"""
Directory principals — a type-discriminated view of Graph directory objects.

Role membership and group membership endpoints return a mix of users, groups,
service principals and devices. The ``@odata.type`` annotation selects the
variant, so callers filter with ``isinstance`` instead of probing the API.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    user_principal_name: str
    display_name: str = ""
    account_enabled: Optional[bool] = None
    on_premises_sync_enabled: Optional[bool] = None


@dataclass(frozen=True)
class DirectoryGroup:
    id: str
    display_name: str = ""


@dataclass(frozen=True)
class DirectoryServicePrincipal:
    id: str
    display_name: str = ""
    app_id: str = ""


@dataclass(frozen=True)
class OtherPrincipal:
    id: str
    odata_type: str = ""
    display_name: str = ""


Principal = Union[DirectoryUser, DirectoryGroup, DirectoryServicePrincipal, OtherPrincipal]


def principal_from_graph(obj: dict) -> Principal:
    """Build the matching principal variant from a Graph directoryObject."""
    kind = (obj.get("@odata.type") or "").split(".")[-1]
    object_id = obj.get("id", "")
    display_name = obj.get("displayName") or ""

    if kind == "user":
        return DirectoryUser(
            id=object_id,
            user_principal_name=obj.get("userPrincipalName") or "",
            display_name=display_name,
            account_enabled=obj.get("accountEnabled"),
            on_premises_sync_enabled=obj.get("onPremisesSyncEnabled"),
        )
    if kind == "group":
        return DirectoryGroup(id=object_id, display_name=display_name)
    if kind == "servicePrincipal":
        return DirectoryServicePrincipal(
            id=object_id,
            display_name=display_name,
            app_id=obj.get("appId") or "",
        )
    return OtherPrincipal(id=object_id, odata_type=kind, display_name=display_name)
