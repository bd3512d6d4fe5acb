import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from dotenv import load_dotenv

from libraryapp.main import app, get_db
from libraryapp.models import Base, Book, BookCopy, CopyStatus, Role, ACTIVE
from libraryapp import crud, services
from libraryapp.config import settings
from libraryapp.seed import seed_roles

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DB_URL", "sqlite:///./test.db")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Minimum bcrypt cost
settings.bcrypt_rounds = 4

PASSWORD = "secret123"


@pytest.fixture(scope="function")
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    seed_roles(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    app.state.testing = True

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


def make_user(db_session, username, role, status=ACTIVE):
    user = crud.create_user(
        db_session,
        username=username,
        email=f"{username}@example.com",
        hashed_password=services.hash_password(PASSWORD),
        status=status,
        role=role,
    )
    db_session.commit()
    return user


@pytest.fixture(scope="function")
def reader(db_session):
    return make_user(db_session, "reader", Role.READER)


@pytest.fixture(scope="function")
def librarian(db_session):
    return make_user(db_session, "librarian", Role.LIBRARIAN)


@pytest.fixture(scope="function")
def admin(db_session):
    return make_user(db_session, "admin", Role.ADMIN)


@pytest.fixture(scope="function")
def test_book(db_session) -> Book:
    book = crud.create_book(
        db_session,
        title="Test Book",
        author_first_name="Test",
        author_last_name="Author",
        genre="Fiction",
        description="Test Description",
    )
    db_session.commit()
    return book


@pytest.fixture(scope="function")
def test_copy(db_session, test_book) -> BookCopy:
    copy = crud.create_copy(db_session, test_book.id, "INV-0001", CopyStatus.AVAILABLE)
    db_session.commit()
    return copy
