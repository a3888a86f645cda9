"""
Single Database Multi-Tenant Models
Schools (tenants), users and the tenant-scoped academic models: academic years,
terms, classes and students. Fee models live in fee_models.py
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Date, Enum, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, date
import enum
import json

Base = declarative_base()


def money(value):
    """Numeric column value -> float for JSON responses"""
    if value is None:
        return 0.0
    return float(value)


def iso(value):
    return value.isoformat() if value else None


# ===== SCHOOL (TENANT) MODEL =====
class School(Base):
    __tablename__ = 'schools'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)  # URL identifier
    address = Column(Text, nullable=True)
    phone = Column(String(30), nullable=True)
    email = Column(String(120), nullable=True)
    website = Column(String(255), nullable=True)
    logo_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Configuration
    settings = Column(Text, nullable=True)  # JSON string for school-specific settings

    # Relationships
    users = relationship("User", back_populates="school", cascade="all, delete-orphan")
    classes = relationship("SchoolClass", back_populates="school", cascade="all, delete-orphan")
    academic_years = relationship("AcademicYear", back_populates="school", cascade="all, delete-orphan")
    students = relationship("Student", back_populates="school", cascade="all, delete-orphan")

    def __repr__(self):
        return f'<School {self.name} ({self.slug})>'

    @property
    def settings_dict(self):
        if not self.settings:
            return {}
        try:
            return json.loads(self.settings)
        except ValueError:
            return {}

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'address': self.address,
            'phone': self.phone,
            'email': self.email,
            'website': self.website,
            'logoUrl': self.logo_url,
            'isActive': self.is_active,
            'createdAt': iso(self.created_at),
        }


# ===== USER MODEL =====
class UserRoleEnum(enum.Enum):
    SUPERADMIN = "superadmin"
    SCHOOL_ADMIN = "school_admin"
    STAFF = "staff"


class User(Base, UserMixin):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=True)  # NULL for superadmin
    username = Column(String(80), unique=True, nullable=False)
    email = Column(String(120), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRoleEnum.STAFF.value)
    first_name = Column(String(50))
    last_name = Column(String(50))
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    school = relationship("School", back_populates="users")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_superadmin(self):
        return self.role == UserRoleEnum.SUPERADMIN.value

    def get_id(self):
        """Return user ID in format needed by Flask-Login"""
        if self.school_id:
            return f"school_{self.school_id}_{self.id}"
        return f"admin_{self.id}"

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'name': self.full_name,
            'isActive': self.is_active,
            'lastLogin': iso(self.last_login),
        }

    def __repr__(self):
        return f'<User {self.username} ({self.role})>'


# ===== ENUMS FOR TENANT-SCOPED MODELS =====
class GenderEnum(enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class StudentStatusEnum(enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"
    TRANSFERRED = "TRANSFERRED"
    SUSPENDED = "SUSPENDED"


# ===== TENANT-SCOPED MODELS =====

class AcademicYear(Base):
    __tablename__ = 'academic_years'
    __table_args__ = (
        UniqueConstraint('school_id', 'year', name='unique_school_academic_year'),
        Index('idx_academic_year_school', 'school_id'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    year = Column(String(20), nullable=False)  # e.g., "2024-2025"
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_current = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    school = relationship("School", back_populates="academic_years")
    terms = relationship("Term", back_populates="academic_year", cascade="all, delete-orphan",
                         order_by="Term.order")
    students = relationship("Student", back_populates="academic_year")

    def to_dict(self, include_terms=False):
        data = {
            'id': self.id,
            'schoolId': self.school_id,
            'year': self.year,
            'startDate': iso(self.start_date),
            'endDate': iso(self.end_date),
            'isCurrent': bool(self.is_current),
        }
        if include_terms:
            data['terms'] = [t.to_dict() for t in self.terms]
        return data

    def __repr__(self):
        return f'<AcademicYear {self.year}>'


class Term(Base):
    __tablename__ = 'terms'
    __table_args__ = (
        UniqueConstraint('academic_year_id', 'name', name='unique_academic_year_term'),
    )

    id = Column(Integer, primary_key=True)
    academic_year_id = Column(Integer, ForeignKey('academic_years.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(50), nullable=False)  # e.g., "Term 1"
    order = Column(Integer, nullable=False, default=1)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_current = Column(Boolean, default=False)

    # Relationships
    academic_year = relationship("AcademicYear", back_populates="terms")

    def to_dict(self):
        return {
            'id': self.id,
            'academicYearId': self.academic_year_id,
            'name': self.name,
            'order': self.order,
            'startDate': iso(self.start_date),
            'endDate': iso(self.end_date),
            'isCurrent': bool(self.is_current),
        }

    def __repr__(self):
        return f'<Term {self.name}>'


class SchoolClass(Base):
    __tablename__ = 'classes'
    __table_args__ = (
        UniqueConstraint('school_id', 'name', 'level', name='unique_school_class'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(50), nullable=False)  # e.g., "Grade 9"
    level = Column(Integer, nullable=False)
    capacity = Column(Integer, default=40)
    is_active = Column(Boolean, default=True)
    next_class_id = Column(Integer, ForeignKey('classes.id'), nullable=True)  # promotion target
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    school = relationship("School", back_populates="classes")
    students = relationship("Student", back_populates="student_class")
    next_class = relationship("SchoolClass", remote_side=[id])

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'name': self.name,
            'level': self.level,
            'capacity': self.capacity,
            'isActive': bool(self.is_active),
            'nextClassId': self.next_class_id,
        }

    def __repr__(self):
        return f'<SchoolClass {self.name}>'


class Student(Base):
    __tablename__ = 'students'
    __table_args__ = (
        UniqueConstraint('school_id', 'admission_number', name='unique_school_admission_number'),
        Index('idx_student_school', 'school_id'),
        Index('idx_student_class', 'class_id'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)

    # Basic Information
    admission_number = Column(String(30), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    middle_name = Column(String(50))
    date_of_birth = Column(Date)
    gender = Column(Enum(GenderEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=True)

    # Contact Information
    email = Column(String(120))
    phone = Column(String(30))
    address = Column(Text)

    # Parent / Guardian Information
    parent_name = Column(String(100))
    parent_phone = Column(String(30))
    parent_email = Column(String(120))

    # Academic Information
    class_id = Column(Integer, ForeignKey('classes.id'), nullable=False)
    academic_year_id = Column(Integer, ForeignKey('academic_years.id'), nullable=False)
    enrollment_date = Column(Date, default=date.today)
    graduation_date = Column(Date, nullable=True)
    status = Column(Enum(StudentStatusEnum, values_callable=lambda obj: [e.value for e in obj]), default=StudentStatusEnum.ACTIVE)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    school = relationship("School", back_populates="students")
    student_class = relationship("SchoolClass", back_populates="students")
    academic_year = relationship("AcademicYear", back_populates="students")
    fee_balances = relationship("FeeBalance", back_populates="student", cascade="all, delete-orphan")
    fee_payments = relationship("FeePayment", back_populates="student", cascade="all, delete-orphan",
                                order_by="FeePayment.payment_date.desc()")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'schoolId': self.school_id,
            'admissionNumber': self.admission_number,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'middleName': self.middle_name,
            'name': self.full_name,
            'dateOfBirth': iso(self.date_of_birth),
            'gender': self.gender.value if self.gender else None,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'parentName': self.parent_name,
            'parentPhone': self.parent_phone,
            'parentEmail': self.parent_email,
            'classId': self.class_id,
            'academicYearId': self.academic_year_id,
            'class': {'id': self.student_class.id, 'name': self.student_class.name} if self.student_class else None,
            'academicYear': {'id': self.academic_year.id, 'year': self.academic_year.year} if self.academic_year else None,
            'enrollmentDate': iso(self.enrollment_date),
            'graduationDate': iso(self.graduation_date),
            'status': self.status.value if self.status else None,
            'createdAt': iso(self.created_at),
        }

    def __repr__(self):
        return f'<Student {self.full_name} ({self.admission_number})>'
