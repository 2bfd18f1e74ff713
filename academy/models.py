from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from academy.db import Base


class Role(str, Enum):
    ADMIN = 'admin'
    TEACHER = 'teacher'
    STUDENT = 'student'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'
    EXCUSED = 'excused'


class SubmissionStatus(str, Enum):
    SUBMITTED = 'submitted'
    LATE = 'late'
    RESUBMITTED = 'resubmitted'
    GRADED = 'graded'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class PaymentMethod(str, Enum):
    CASH = 'cash'
    CARD = 'card'
    BANK_TRANSFER = 'bank_transfer'
    UPI = 'upi'
    CHEQUE = 'cheque'
    ONLINE = 'online'
    OTHER = 'other'


WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


class User(Base):
    __tablename__ = 'users'
    __table_args__ = (
        UniqueConstraint('email', name='uq_users_email'),
        Index('ix_users_role_active', 'role', 'is_active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(50))
    email: Mapped[str] = mapped_column(String(255), index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    role: Mapped[str] = mapped_column(String(20), default=Role.STUDENT.value, index=True)
    phone: Mapped[str] = mapped_column(String(32), default='')
    street: Mapped[str] = mapped_column(String(255), default='')
    city: Mapped[str] = mapped_column(String(120), default='')
    state: Mapped[str] = mapped_column(String(120), default='')
    zip_code: Mapped[str] = mapped_column(String(20), default='')
    country: Mapped[str] = mapped_column(String(120), default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    taught_batches: Mapped[list['Batch']] = relationship('Batch', back_populates='teacher')
    enrollments: Mapped[list['BatchStudent']] = relationship('BatchStudent', back_populates='student')


class Batch(Base):
    __tablename__ = 'batches'
    __table_args__ = (
        Index('ix_batches_teacher_active', 'teacher_id', 'is_active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(500), default='')
    subject: Mapped[str] = mapped_column(String(120), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    schedule_days: Mapped[str] = mapped_column(String(120), default='')
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    fee: Mapped[float] = mapped_column(Float)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    max_students: Mapped[int] = mapped_column(Integer, default=30)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teacher: Mapped['User'] = relationship('User', back_populates='taught_batches')
    student_links: Mapped[list['BatchStudent']] = relationship(
        'BatchStudent',
        back_populates='batch',
        cascade='all, delete-orphan',
        order_by='BatchStudent.id',
    )

    @property
    def student_ids(self) -> list[int]:
        return [link.student_id for link in self.student_links]

    @property
    def days(self) -> list[str]:
        return [day for day in (self.schedule_days or '').split(',') if day]

    @property
    def duration_months(self) -> int:
        if not self.start_date or not self.end_date:
            return 0
        months = (self.end_date.year - self.start_date.year) * 12
        return months + self.end_date.month - self.start_date.month


class BatchStudent(Base):
    __tablename__ = 'batch_students'
    __table_args__ = (
        UniqueConstraint('batch_id', 'student_id', name='uq_batch_students_batch_student'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey('batches.id', ondelete='CASCADE'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    batch: Mapped['Batch'] = relationship('Batch', back_populates='student_links')
    student: Mapped['User'] = relationship('User', back_populates='enrollments')


class Attendance(Base):
    __tablename__ = 'attendance'
    __table_args__ = (
        UniqueConstraint('student_id', 'batch_id', 'attendance_date', name='uq_attendance_student_batch_date'),
        Index('ix_attendance_batch_date', 'batch_id', 'attendance_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey('batches.id', ondelete='CASCADE'), index=True)
    attendance_date: Mapped[date] = mapped_column(Date, index=True)
    status: Mapped[str] = mapped_column(String(20), default=AttendanceStatus.PRESENT.value, index=True)
    notes: Mapped[str] = mapped_column(String(500), default='')
    marked_by_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Assignment(Base):
    __tablename__ = 'assignments'
    __table_args__ = (
        Index('ix_assignments_batch_due', 'batch_id', 'due_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey('batches.id', ondelete='CASCADE'), index=True)
    assigned_by_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default='')
    due_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    total_marks: Mapped[float] = mapped_column(Float)
    allow_late_submission: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    attachments: Mapped[list['AssignmentFile']] = relationship(
        'AssignmentFile',
        primaryjoin='and_(AssignmentFile.assignment_id == Assignment.id, AssignmentFile.submission_id.is_(None))',
        viewonly=True,
        order_by='AssignmentFile.id',
    )
    submissions: Mapped[list['Submission']] = relationship(
        'Submission',
        back_populates='assignment',
        cascade='all, delete-orphan',
        order_by='Submission.id',
    )


class Submission(Base):
    __tablename__ = 'submissions'
    __table_args__ = (
        UniqueConstraint('assignment_id', 'student_id', name='uq_submissions_assignment_student'),
        Index('ix_submissions_student_status', 'student_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey('assignments.id', ondelete='CASCADE'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    status: Mapped[str] = mapped_column(String(20), default=SubmissionStatus.SUBMITTED.value, index=True)
    is_late: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str] = mapped_column(String(1000), default='')
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    resubmitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    marks_obtained: Mapped[float | None] = mapped_column(Float, nullable=True)
    feedback: Mapped[str] = mapped_column(String(1000), default='')
    graded_by_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    assignment: Mapped['Assignment'] = relationship('Assignment', back_populates='submissions')
    files: Mapped[list['AssignmentFile']] = relationship(
        'AssignmentFile',
        back_populates='submission',
        cascade='all, delete-orphan',
        order_by='AssignmentFile.id',
    )


class AssignmentFile(Base):
    __tablename__ = 'assignment_files'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey('assignments.id', ondelete='CASCADE'), index=True)
    submission_id: Mapped[int | None] = mapped_column(
        ForeignKey('submissions.id', ondelete='CASCADE'),
        nullable=True,
        index=True,
    )
    stored_name: Mapped[str] = mapped_column(String(255), unique=True)
    filename: Mapped[str] = mapped_column(String(255))
    mime_type: Mapped[str] = mapped_column(String(120), default='')
    size: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    submission: Mapped['Submission | None'] = relationship('Submission', back_populates='files')


class Material(Base):
    __tablename__ = 'materials'
    __table_args__ = (
        Index('ix_materials_batch_active', 'batch_id', 'is_active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey('batches.id', ondelete='CASCADE'), index=True)
    uploaded_by_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(String(1000), default='')
    tags: Mapped[str] = mapped_column(String(500), default='')
    stored_name: Mapped[str] = mapped_column(String(255), unique=True)
    filename: Mapped[str] = mapped_column(String(255))
    mime_type: Mapped[str] = mapped_column(String(120), default='')
    size: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def tag_list(self) -> list[str]:
        return [tag for tag in (self.tags or '').split(',') if tag]


class Payment(Base):
    __tablename__ = 'payments'
    __table_args__ = (
        UniqueConstraint('student_id', 'batch_id', 'month', name='uq_payments_student_batch_month'),
        UniqueConstraint('receipt_number', name='uq_payments_receipt_number'),
        Index('ix_payments_batch_status', 'batch_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    batch_id: Mapped[int | None] = mapped_column(ForeignKey('batches.id', ondelete='SET NULL'), nullable=True, index=True)
    month: Mapped[str] = mapped_column(String(7), index=True)
    amount: Mapped[float] = mapped_column(Float)
    payment_method: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, index=True)
    payment_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    transaction_id: Mapped[str] = mapped_column(String(120), default='')
    receipt_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    gateway_order_ref: Mapped[str] = mapped_column(String(120), default='', index=True)
    notes: Mapped[str] = mapped_column(String(500), default='')
    recorded_by_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    batch: Mapped['Batch | None'] = relationship('Batch')
