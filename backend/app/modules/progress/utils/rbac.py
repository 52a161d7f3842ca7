from fastapi import Depends

from app.modules.auth.deps import ADMIN_ROLE, TEACHER_ROLE, RequireSchoolRole, UserContext


def RequireBoardMember():
    def _checker(user: UserContext = Depends(RequireSchoolRole(TEACHER_ROLE, ADMIN_ROLE))) -> UserContext:
        return user

    return _checker


def BoardTeacherScope(user: UserContext) -> int | None:
    """Teacher id the caller's board queries are limited to; admins see the whole school."""
    if user.Role == ADMIN_ROLE:
        return None
    return user.Id
