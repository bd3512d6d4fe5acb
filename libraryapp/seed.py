import logging

from sqlalchemy.orm import Session

from libraryapp import crud, models, services
from libraryapp.config import settings
from libraryapp.storage import transaction

logger = logging.getLogger(__name__)


def seed_roles(db: Session):
    existing = {record.name for record in db.query(models.RoleRecord).all()}
    missing = [role for role in models.Role if role.value not in existing]
    if not missing:
        return
    with transaction(db):
        for role in missing:
            crud.create_role(db, role)
    logger.info(f"Seeded roles: {', '.join(role.value for role in missing)}")


def seed_admin(db: Session):
    if not (settings.admin_username and settings.admin_password):
        return
    if crud.get_user_by_username(db, settings.admin_username) is not None:
        return
    with transaction(db):
        crud.create_user(
            db,
            username=settings.admin_username,
            email=settings.admin_email,
            hashed_password=services.hash_password(settings.admin_password),
            status=models.ACTIVE,
            role=models.Role.ADMIN,
        )
    logger.info(f"Created bootstrap admin '{settings.admin_username}'")


def init_db(db: Session):
    models.Base.metadata.create_all(bind=db.get_bind())
    seed_roles(db)
    seed_admin(db)
