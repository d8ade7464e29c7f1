"""Fitness metric model definitions."""

from sqlalchemy import Column, Date, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from school_backend.database import Base


class StudentAnthro(Base):
    """Height and weight measurement taken by a teacher."""
    __tablename__ = "student_anthros"

    id = Column(Integer, primary_key=True, index=True)
    teacher_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    student_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    date_recorded = Column(Date, nullable=False)
    height = Column(Float)
    weight = Column(Float)


class PerformanceType(Base):
    """A kind of fitness test, e.g. a mile run."""
    __tablename__ = "student_performance_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    unit = Column(String)


class StudentPerformanceGrade(Base):
    __tablename__ = "student_performance_grades"

    id = Column(Integer, primary_key=True, index=True)
    performance_type_id = Column(
        Integer, ForeignKey("student_performance_types.id", ondelete="CASCADE"), nullable=False
    )
    teacher_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    student_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    date_taken = Column(Date, nullable=False)
    grade = Column(Float, nullable=False)

    performance_type = relationship("PerformanceType")


class StudentAssignedPerformanceTest(Base):
    """A performance test a teacher has assigned to a student."""
    __tablename__ = "student_assigned_performance_test"
    __table_args__ = (
        UniqueConstraint('performance_type_id', 'student_user_id', name='uq_assigned_test_type_student'),
    )

    id = Column(Integer, primary_key=True, index=True)
    performance_type_id = Column(
        Integer, ForeignKey("student_performance_types.id", ondelete="CASCADE"), nullable=False
    )
    teacher_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    student_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    date_assigned = Column(Date)

    performance_type = relationship("PerformanceType")
