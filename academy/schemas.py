from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


RoleName = Literal['admin', 'teacher', 'student']
Weekday = Literal['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']
AttendanceStatusName = Literal['present', 'absent', 'late', 'excused']
PaymentMethodName = Literal['cash', 'card', 'bank_transfer', 'upi', 'cheque', 'online', 'other']
PaymentStatusName = Literal['pending', 'completed', 'failed', 'refunded']

TIME_PATTERN = r'^([01]\d|2[0-3]):[0-5]\d$'
MONTH_PATTERN = r'^\d{4}-(0[1-9]|1[0-2])$'


class AddressFields(BaseModel):
    street: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=120)
    state: str | None = Field(default=None, max_length=120)
    zip_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=120)


class RegisterRequest(AddressFields):
    name: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=3, max_length=255, pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    password: str = Field(min_length=1)
    phone: str = Field(default='', max_length=32)


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(AddressFields):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    phone: str | None = Field(default=None, max_length=32)


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


class UserCreateRequest(RegisterRequest):
    role: RoleName = 'student'
    is_active: bool = True


class UserUpdateRequest(ProfileUpdateRequest):
    email: str | None = Field(default=None, pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    role: RoleName | None = None
    is_active: bool | None = None


class ScheduleIn(BaseModel):
    days: list[Weekday] = Field(min_length=1)
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)


class ScheduleUpdate(BaseModel):
    days: list[Weekday] | None = None
    start_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    end_time: str | None = Field(default=None, pattern=TIME_PATTERN)


class BatchCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default='', max_length=500)
    subject: str = Field(min_length=1, max_length=120)
    teacher_id: int | None = None
    schedule: ScheduleIn
    fee: float = Field(ge=0)
    start_date: date
    end_date: date | None = None
    max_students: int = Field(default=30, ge=1)
    is_active: bool = True


class BatchUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    subject: str | None = Field(default=None, min_length=1, max_length=120)
    teacher_id: int | None = None
    schedule: ScheduleUpdate | None = None
    fee: float | None = Field(default=None, ge=0)
    start_date: date | None = None
    end_date: date | None = None
    max_students: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class BatchStudentRequest(BaseModel):
    student_id: int


class AttendanceCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: int
    batch_id: int
    attendance_date: date = Field(alias='date')
    status: AttendanceStatusName = 'present'
    notes: str = Field(default='', max_length=500)


class AttendanceEntry(BaseModel):
    student_id: int
    status: AttendanceStatusName = 'present'
    notes: str = Field(default='', max_length=500)


class BulkAttendanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: int
    attendance_date: date = Field(alias='date')
    attendances: list[AttendanceEntry] = Field(min_length=1)


class AttendanceUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: int | None = None
    batch_id: int | None = None
    attendance_date: date | None = Field(default=None, alias='date')
    status: AttendanceStatusName | None = None
    notes: str | None = Field(default=None, max_length=500)


class GradeRequest(BaseModel):
    marks: float
    feedback: str = Field(default='', max_length=1000)


class PaymentCreateRequest(BaseModel):
    student_id: int
    batch_id: int
    month: str = Field(pattern=MONTH_PATTERN)
    amount: float | None = Field(default=None, ge=0)
    payment_method: PaymentMethodName
    payment_date: datetime | None = None
    transaction_id: str = Field(default='', max_length=120)
    notes: str = Field(default='', max_length=500)


class PaymentUpdateRequest(BaseModel):
    student_id: int | None = None
    batch_id: int | None = None
    month: str | None = Field(default=None, pattern=MONTH_PATTERN)
    amount: float | None = Field(default=None, ge=0)
    payment_method: PaymentMethodName | None = None
    status: PaymentStatusName | None = None
    payment_date: datetime | None = None
    transaction_id: str | None = Field(default=None, max_length=120)
    notes: str | None = Field(default=None, max_length=500)


class PaymentVerifyRequest(BaseModel):
    order_ref: str = Field(min_length=1)
    payment_ref: str = Field(min_length=1)
    signature: str = ''
