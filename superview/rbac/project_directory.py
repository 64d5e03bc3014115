# superview/rbac/project_directory.py

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from superview.config.defaults import logger
from superview.data_classes import User
from superview.errors import NotFoundError, UnauthorizedError
from superview.rbac.permissions import (
    MAINTAINER_PERMISSION,
    ProjectDetail,
    ProjectPermission,
    UserPermission,
    has_permission,
)
from superview.redis_catalog import RedisCatalog


class ProjectDirectory(ABC):
    """Answers who may do what inside a project."""

    @abstractmethod
    def get_project_detail(self, project_id: int, user: User) -> ProjectDetail:
        """Raise ``NotFoundError`` / ``UnauthorizedError`` when not visible."""

    def is_maintainer(self, project: ProjectDetail, user: User) -> bool:
        return user.id == project.creator_id or user.id in project.maintainers

    def get_project_permission(self, project: ProjectDetail, user: User) -> ProjectPermission:
        if self.is_maintainer(project, user):
            return MAINTAINER_PERMISSION
        return project.members.get(user.id) or ProjectPermission()

    def allow_get_data(self, project: ProjectDetail, user: User) -> bool:
        if self.is_maintainer(project, user):
            return True
        permission = self.get_project_permission(project, user)
        return has_permission(permission.view_permission, UserPermission.READ)


class RedisProjectDirectory(ProjectDirectory):
    """
    Project documents stored by ``RedisCatalog.put_project``:

        {"name": ..., "creator_id": 1, "maintainers": [2],
         "members": {"3": {"view_permission": 1, ...}}}
    """

    def __init__(self, redis_catalog: Optional[RedisCatalog] = None):
        self._catalog = redis_catalog or RedisCatalog()

    def get_project_detail(self, project_id: int, user: User) -> ProjectDetail:
        doc = self._catalog.get_project(project_id)
        if not doc:
            logger.info(f"[project] project (:{project_id}) not found")
            raise NotFoundError("project is not found")

        members = {
            int(uid): ProjectPermission.from_json(perm)
            for uid, perm in (doc.get("members") or {}).items()
        }
        project = ProjectDetail(
            id=project_id,
            name=doc.get("name") or "",
            creator_id=doc.get("creator_id"),
            maintainers={int(m) for m in doc.get("maintainers") or []},
            members=members,
        )
        if not self.is_maintainer(project, user) and user.id not in members:
            raise UnauthorizedError("you have not permission to access this project")
        return project
