import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.orm import Session

from libraryapp import models, services
from libraryapp.storage import get_db

logger = logging.getLogger(__name__)

security = HTTPBasic()
optional_security = HTTPBasic(auto_error=False)


def get_current_user(
    credentials: HTTPBasicCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    return services.authenticate(db, credentials.username, credentials.password)


def get_optional_user(
    credentials: Optional[HTTPBasicCredentials] = Depends(optional_security),
    db: Session = Depends(get_db),
) -> Optional[models.User]:
    if credentials is None:
        return None
    return services.authenticate(db, credentials.username, credentials.password)


def require_role(role: models.Role):
    """Dependency factory admitting only users holding ``role``."""

    def checker(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role != role:
            logger.warning(
                f"Access denied: required role {role.value}, got {user.role.value} "
                f"for '{user.username}'"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{role.value.capitalize()} access required",
            )
        return user

    return checker


require_reader = require_role(models.Role.READER)
require_librarian = require_role(models.Role.LIBRARIAN)
require_admin = require_role(models.Role.ADMIN)
