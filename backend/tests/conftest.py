import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.modules.auth import models as auth_models  # noqa: F401
from app.modules.enrollments import models as enrollments_models  # noqa: F401
from app.modules.progress import models as progress_models  # noqa: F401

os.environ.setdefault("LOG_FILE_PATH", "")


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    ).execution_options(schema_translate_map={"auth": None, "school": None})
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
