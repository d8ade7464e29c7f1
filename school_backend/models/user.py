"""User model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from school_backend.database import Base

USER_TYPES = ('student', 'teacher', 'admin')


class User(Base):
    """Represents an application user of any role."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    birth_date = Column(Date, nullable=False)
    gender_identity = Column(String)
    pronouns = Column(String)
    user_type = Column(String, nullable=False, index=True)  # student/teacher/admin
    photo_url = Column(String)
    is_archived = Column(Boolean, nullable=False, default=False)
    date_archived = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student_details = relationship(
        "StudentDetail", uselist=False, back_populates="user", cascade="all, delete-orphan"
    )
    teacher_details = relationship(
        "TeacherDetail", uselist=False, back_populates="user", cascade="all, delete-orphan"
    )
    admin_details = relationship(
        "AdminDetail", uselist=False, back_populates="user", cascade="all, delete-orphan"
    )
    roster_entry = relationship("SectionRoster", uselist=False, back_populates="student", passive_deletes=True)


class StudentDetail(Base):
    """Student-only attributes, one row per student user."""
    __tablename__ = "student_details"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    grad_year = Column(Integer, nullable=False)

    user = relationship("User", back_populates="student_details")


class TeacherDetail(Base):
    __tablename__ = "teacher_details"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    years_exp = Column(Integer)
    bio = Column(Text)

    user = relationship("User", back_populates="teacher_details")


class AdminDetail(Base):
    __tablename__ = "admin_details"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    years_exp = Column(Integer)
    bio = Column(Text)

    user = relationship("User", back_populates="admin_details")
