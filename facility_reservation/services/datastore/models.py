"""SQLAlchemy models for users and their bearer tokens."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import declarative_base, relationship

from ... import domain
from .util import utcnow

Base = declarative_base()


class DBUser(Base):  # type: ignore
    """
    Persistence for :class:`domain.User`.

    +------------+--------------------------+------+-----+---------+
    | Field      | Type                     | Null | Key | Default |
    +------------+--------------------------+------+-----+---------+
    | id         | varchar(36)              | NO   | PRI |         |
    | username   | varchar(100)             | NO   | UNI |         |
    | is_staff   | boolean                  | NO   | MUL | false   |
    | created_at | timestamp with time zone | NO   |     | now()   |
    +------------+--------------------------+------+-----+---------+
    """

    __tablename__ = 'users'

    id = Column(String(36), primary_key=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    is_staff = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False,
                        server_default=utcnow())

    tokens = relationship('DBUserToken', back_populates='user',
                          cascade='all, delete-orphan', passive_deletes=True)

    def to_domain(self) -> domain.User:
        """Generate a :class:`domain.User` from this row."""
        return domain.User(
            user_id=self.id,
            username=self.username,
            is_staff=bool(self.is_staff),
            created_at=self.created_at
        )


class DBUserToken(Base):  # type: ignore
    """
    Persistence for :class:`domain.Token`.

    +------------+--------------------------+------+-----+---------+
    | Field      | Type                     | Null | Key | Default |
    +------------+--------------------------+------+-----+---------+
    | id         | varchar(36)              | NO   | PRI |         |
    | user_id    | varchar(36)              | NO   | MUL |         |
    | token      | varchar(255)             | NO   | UNI |         |
    | name       | varchar(100)             | NO   |     |         |
    | expires_at | timestamp with time zone | YES  |     | NULL    |
    | created_at | timestamp with time zone | NO   |     | now()   |
    +------------+--------------------------+------+-----+---------+
    """

    __tablename__ = 'user_tokens'

    id = Column(String(36), primary_key=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     nullable=False, index=True)
    token = Column(String(255), nullable=False, unique=True, index=True)
    """The bearer secret."""
    name = Column(String(100), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    """If NULL, the token never expires."""
    created_at = Column(DateTime(timezone=True), nullable=False,
                        server_default=utcnow())

    user = relationship('DBUser', back_populates='tokens')

    def to_domain(self) -> domain.Token:
        """Generate a :class:`domain.Token` from this row."""
        return domain.Token(
            token_id=self.id,
            user_id=self.user_id,
            token=self.token,
            name=self.name,
            expires_at=self.expires_at,
            created_at=self.created_at
        )
