"""
Request Schemas for the School Fee API

Each pydantic model validates one endpoint's payload:
- required fields and types
- non-negative amounts
- enumerations (gender, student status, fee frequency, export type/format)
- email format

Wire names are camelCase (firstName, academicYearId, ...); validated data is
dumped with snake_case names that match the ORM columns.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Literal

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, EmailStr, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models import GenderEnum, StudentStatusEnum
from fee_models import FeeFrequencyEnum


class ApiSchema(BaseModel):
    """Base schema: camelCase aliases, blank strings treated as missing"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    @model_validator(mode='before')
    @classmethod
    def drop_blank_strings(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if not (isinstance(v, str) and v.strip() == '')}
        return data

    def changes(self) -> dict:
        """Only the fields the client actually sent"""
        return self.model_dump(exclude_unset=True)


def parse_flexible_date(value):
    """Accept ISO dates plus the looser formats spreadsheets produce (15/01/2005, Jan 15 2005)"""
    if value is None or isinstance(value, (date, datetime)):
        return value
    if isinstance(value, str):
        try:
            return date_parser.parse(value, dayfirst=False).date()
        except (ValueError, OverflowError):
            raise ValueError(f"'{value}' is not a valid date")
    return value


def upper_enum_value(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


# ===== AUTH =====

class LoginRequest(ApiSchema):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


# ===== STUDENTS =====

class StudentBase(ApiSchema):
    middle_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[GenderEnum] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[EmailStr] = None
    enrollment_date: Optional[date] = None

    _dates = field_validator('date_of_birth', 'enrollment_date', mode='before')(parse_flexible_date)
    _enums = field_validator('gender', mode='before')(upper_enum_value)


class StudentCreate(StudentBase):
    admission_number: Optional[str] = Field(default=None, max_length=30)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    class_id: int
    academic_year_id: Optional[int] = None
    status: StudentStatusEnum = StudentStatusEnum.ACTIVE

    _status = field_validator('status', mode='before')(upper_enum_value)


class StudentUpdate(StudentBase):
    admission_number: Optional[str] = Field(default=None, min_length=1, max_length=30)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    class_id: Optional[int] = None
    academic_year_id: Optional[int] = None
    status: Optional[StudentStatusEnum] = None
    graduation_date: Optional[date] = None

    _status = field_validator('status', mode='before')(upper_enum_value)
    _graduation = field_validator('graduation_date', mode='before')(parse_flexible_date)


# ===== CLASSES, ACADEMIC YEARS, TERMS =====

class ClassCreate(ApiSchema):
    name: str = Field(min_length=1, max_length=50)
    level: int = Field(ge=0)
    capacity: int = Field(default=40, ge=0)
    is_active: bool = True
    next_class_id: Optional[int] = None


class ClassUpdate(ApiSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    level: Optional[int] = Field(default=None, ge=0)
    capacity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    next_class_id: Optional[int] = None


class AcademicYearCreate(ApiSchema):
    year: str = Field(min_length=1, max_length=20)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_current: bool = Field(default=False, validation_alias=AliasChoices('isCurrent', 'isActive', 'is_current'))

    _dates = field_validator('start_date', 'end_date', mode='before')(parse_flexible_date)

    @model_validator(mode='after')
    def check_date_order(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError('endDate must be on or after startDate')
        return self


class AcademicYearUpdate(ApiSchema):
    year: Optional[str] = Field(default=None, min_length=1, max_length=20)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_current: Optional[bool] = Field(default=None, validation_alias=AliasChoices('isCurrent', 'isActive', 'is_current'))

    _dates = field_validator('start_date', 'end_date', mode='before')(parse_flexible_date)


class TermCreate(ApiSchema):
    name: str = Field(min_length=1, max_length=50)
    order: int = Field(default=1, ge=1, le=3)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_current: bool = False

    _dates = field_validator('start_date', 'end_date', mode='before')(parse_flexible_date)


# ===== FEE TYPES / STRUCTURES / BALANCES =====

class FeeTypeCreate(ApiSchema):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    is_mandatory: bool = True
    is_recurring: bool = True
    frequency: FeeFrequencyEnum = FeeFrequencyEnum.TERM
    is_active: bool = True

    _frequency = field_validator('frequency', mode='before')(upper_enum_value)


class FeeTypeUpdate(ApiSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_mandatory: Optional[bool] = None
    is_recurring: Optional[bool] = None
    frequency: Optional[FeeFrequencyEnum] = None
    is_active: Optional[bool] = None

    _frequency = field_validator('frequency', mode='before')(upper_enum_value)


class FeeStructureCreate(ApiSchema):
    academic_year_id: int
    class_id: int
    fee_type_id: int
    amount: Decimal = Field(ge=0, decimal_places=2)
    term1_amount: Decimal = Field(default=Decimal('0'), ge=0, decimal_places=2)
    term2_amount: Decimal = Field(default=Decimal('0'), ge=0, decimal_places=2)
    term3_amount: Decimal = Field(default=Decimal('0'), ge=0, decimal_places=2)
    is_active: bool = True


class FeeStructureUpdate(ApiSchema):
    academic_year_id: Optional[int] = None
    class_id: Optional[int] = None
    fee_type_id: Optional[int] = None
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    term1_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    term2_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    term3_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    is_active: Optional[bool] = None


class FeeStructureApply(ApiSchema):
    term_id: Optional[int] = None
    due_date: Optional[date] = None

    _dates = field_validator('due_date', mode='before')(parse_flexible_date)


class FeeBalanceCreate(ApiSchema):
    student_id: int
    academic_year_id: int
    term_id: Optional[int] = None
    fee_type_id: int
    amount_charged: Decimal = Field(ge=0, decimal_places=2)
    amount_paid: Decimal = Field(default=Decimal('0'), ge=0, decimal_places=2)
    balance: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    due_date: Optional[date] = None

    _dates = field_validator('due_date', mode='before')(parse_flexible_date)


class FeeBalanceUpdate(ApiSchema):
    amount_charged: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    amount_paid: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    balance: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    due_date: Optional[date] = None

    _dates = field_validator('due_date', mode='before')(parse_flexible_date)


class PaymentMethodCreate(ApiSchema):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    is_active: bool = True


class PaymentMethodUpdate(ApiSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = None
    is_active: Optional[bool] = None


# ===== PAYMENTS & RECEIPTS =====

class PaymentDetailIn(ApiSchema):
    fee_type_id: int
    amount: Decimal = Field(gt=0, decimal_places=2)


class PaymentCreate(ApiSchema):
    student_id: int
    academic_year_id: Optional[int] = None
    term_id: Optional[int] = None
    payment_date: date = Field(default_factory=date.today)
    receipt_number: Optional[str] = Field(default=None, max_length=50)
    amount_paid: Decimal = Field(gt=0, decimal_places=2)
    payment_method_id: Optional[int] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    payment_details: List[PaymentDetailIn] = Field(min_length=1)

    _dates = field_validator('payment_date', mode='before')(parse_flexible_date)

    @model_validator(mode='after')
    def details_match_total(self):
        total = sum((d.amount for d in self.payment_details), Decimal('0'))
        if total != self.amount_paid:
            raise ValueError(f'paymentDetails total ({total}) must equal amountPaid ({self.amount_paid})')
        return self


class ReceiptRequest(ApiSchema):
    payment_id: int
    format: Literal['pdf', 'html', 'json'] = 'pdf'


class PhotoReceiptForm(ApiSchema):
    """Multipart fields sent alongside an uploaded receipt photo"""
    payment_id: int
    receipt_number: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2, allow_inf_nan=False)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    capture_date: Optional[datetime] = None

    @field_validator('capture_date', mode='before')
    @classmethod
    def parse_capture_date(cls, value):
        if isinstance(value, str):
            try:
                return date_parser.parse(value)
            except (ValueError, OverflowError):
                raise ValueError(f"'{value}' is not a valid date")
        return value


# ===== BULK OPERATIONS =====

class StudentImportRow(ApiSchema):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    student_id: str = Field(min_length=1, max_length=30)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[GenderEnum] = None
    address: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[EmailStr] = None
    class_id: int
    academic_year_id: int
    enrollment_date: Optional[date] = None
    status: StudentStatusEnum = StudentStatusEnum.ACTIVE

    _dates = field_validator('date_of_birth', 'enrollment_date', mode='before')(parse_flexible_date)
    _enums = field_validator('gender', 'status', mode='before')(upper_enum_value)


class StudentImportRequest(ApiSchema):
    students: List[StudentImportRow] = Field(min_length=1)


class ExportFilters(ApiSchema):
    school_id: Optional[int] = None
    class_id: Optional[int] = None
    academic_year_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None

    _dates = field_validator('start_date', 'end_date', mode='before')(parse_flexible_date)


class ExportRequest(ApiSchema):
    type: Literal['students', 'payments', 'fee-balances', 'fee-structures', 'all']
    format: Literal['csv', 'json'] = 'csv'
    filters: ExportFilters = Field(default_factory=ExportFilters)


# ===== REPORTS =====

class ReportQuery(ApiSchema):
    type: str = 'financial'
    academic_year_id: Optional[int] = None
    class_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    _dates = field_validator('start_date', 'end_date', mode='before')(parse_flexible_date)


# ===== SETTINGS & SUPERADMIN =====

class SchoolSettings(ApiSchema):
    """Per-school presentation settings, stored as JSON on the school row"""
    theme: Literal['light', 'dark', 'system'] = 'light'
    primary_color: str = Field(default='#2563eb', pattern=r'^#[0-9a-fA-F]{6}$')
    currency_symbol: str = Field(default='$', max_length=5)
    receipt_footer: str = 'This is a computer generated receipt and does not require a physical signature.'
    academic_year_label: Optional[str] = None


class SchoolProfileUpdate(ApiSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    settings: Optional[SchoolSettings] = None


class SchoolCreate(ApiSchema):
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=2, max_length=100, pattern=r'^[a-z0-9][a-z0-9-]*$')
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    admin_username: str = Field(min_length=3, max_length=80)
    admin_email: Optional[EmailStr] = None
    admin_password: str = Field(min_length=6)
    admin_first_name: str = 'School'
    admin_last_name: str = 'Admin'
    create_sample_data: bool = False


class SchoolUserCreate(ApiSchema):
    username: str = Field(min_length=3, max_length=80)
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Literal['school_admin', 'staff'] = 'staff'
