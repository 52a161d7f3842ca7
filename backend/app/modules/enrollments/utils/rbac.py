from fastapi import Depends

from app.modules.auth.deps import ADMIN_ROLE, RequireSchoolRole, UserContext


def RequireSchoolAdmin():
    def _checker(user: UserContext = Depends(RequireSchoolRole(ADMIN_ROLE))) -> UserContext:
        return user

    return _checker
