from collections.abc import Iterator

from sqlalchemy.orm import Session

from publisher.db.base import SessionLocal


def get_session() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
