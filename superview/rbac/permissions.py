# superview/rbac/permissions.py

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional, Set


class UserPermission(IntEnum):
    HIDDEN = 0  # Not even listed.
    READ = 1  # Can list and query.
    WRITE = 2  # Can create and change.
    DELETE = 3  # Can remove.


@dataclass
class ProjectPermission:
    source_permission: UserPermission = UserPermission.HIDDEN
    view_permission: UserPermission = UserPermission.HIDDEN
    widget_permission: UserPermission = UserPermission.HIDDEN
    download_permission: bool = False

    @classmethod
    def from_json(cls, data: Optional[Dict]) -> "ProjectPermission":
        data = data or {}
        return cls(
            source_permission=UserPermission(int(data.get("source_permission", 0))),
            view_permission=UserPermission(int(data.get("view_permission", 0))),
            widget_permission=UserPermission(int(data.get("widget_permission", 0))),
            download_permission=bool(data.get("download_permission", False)),
        )

    def to_json(self) -> Dict:
        return {
            "source_permission": int(self.source_permission),
            "view_permission": int(self.view_permission),
            "widget_permission": int(self.widget_permission),
            "download_permission": self.download_permission,
        }


# Maintainers get everything.
MAINTAINER_PERMISSION = ProjectPermission(
    source_permission=UserPermission.DELETE,
    view_permission=UserPermission.DELETE,
    widget_permission=UserPermission.DELETE,
    download_permission=True,
)


@dataclass
class ProjectDetail:
    id: int
    name: str = ""
    creator_id: Optional[int] = None
    maintainers: Set[int] = field(default_factory=set)
    members: Dict[int, ProjectPermission] = field(default_factory=dict)


def has_permission(granted: UserPermission, required: UserPermission) -> bool:
    """Check if a granted permission level satisfies the required one."""
    return int(granted) >= int(required)
