from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(50), nullable=False)
    pseudonym = Column(String(30), unique=True, nullable=True)
    bio = Column(Text, nullable=True)
    role = Column(String(10), default="AUTHOR", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_writer = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def display_name(self) -> str:
        return self.pseudonym or self.full_name

    @property
    def is_moderator(self) -> bool:
        return self.role == "ADMIN"
