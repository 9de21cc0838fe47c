from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


class Repository:
    """Session-bound base; each write commits on its own and rolls back on failure."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def save(self, obj):
        self.session.add(obj)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(obj)
        return obj
