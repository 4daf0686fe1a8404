from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlmodel import SQLModel, Session, create_engine

from config import DATABASE_ECHO, DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    echo=DATABASE_ECHO,
)


def create_db_and_tables() -> None:
    """Create all tables in the database if they don't exist."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


def new_session() -> Session:
    """Open a standalone session for work outside a request (sweeps)."""
    return Session(engine)


SessionDep = Annotated[Session, Depends(get_session)]
