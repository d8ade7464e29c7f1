"""Section and roster model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from school_backend.database import Base

GRADE_LEVELS = ('6', '7', '8', '9', '10-11-12')


class Section(Base):
    """Represents a class grouping students of one grade-level category."""
    __tablename__ = "sections"

    id = Column(Integer, primary_key=True, index=True)
    section_code = Column(String(10), unique=True, index=True, nullable=False)
    grade_level = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    roster = relationship(
        "SectionRoster", back_populates="section", order_by="SectionRoster.id", passive_deletes=True
    )


class SectionRoster(Base):
    """Links one student to the section they are currently rostered in.

    A student has at most one row here at a time. That rule is checked by
    the rostering service before every insert rather than by a constraint.
    """
    __tablename__ = "section_rosters"

    id = Column(Integer, primary_key=True, index=True)
    student_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    section = relationship("Section", back_populates="roster")
    student = relationship("User", back_populates="roster_entry")
