"""
Fee Management Models for Multi-Tenant School Fee Management
This file contains all fee-related models including fee types, fee structures,
balances, payments, payment details and receipts
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Numeric, Date, Enum, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, date
from decimal import Decimal
import enum

from models import Base, money, iso


# ===== ENUMS =====

class FeeFrequencyEnum(enum.Enum):
    ONCE = "ONCE"
    TERM = "TERM"
    YEAR = "YEAR"
    MONTH = "MONTH"


class BalanceStatusEnum(enum.Enum):
    PAID = "PAID"
    PARTIAL = "PARTIAL"
    UNPAID = "UNPAID"
    OVERDUE = "OVERDUE"


class ReceiptFormatEnum(enum.Enum):
    HTML = "html"
    JSON = "json"
    PDF = "pdf"


# ===== FEE TYPE MODEL =====

class FeeType(Base):
    """Charge categories like Tuition, Library, Lab, Sports, Transport, etc."""
    __tablename__ = 'fee_types'
    __table_args__ = (
        UniqueConstraint('school_id', 'name_key', name='unique_school_fee_type_name'),
        Index('idx_fee_type_school', 'school_id'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(100), nullable=False)
    name_key = Column(String(100), nullable=False)  # lower-cased name, case-insensitive uniqueness
    description = Column(Text, nullable=True)
    is_mandatory = Column(Boolean, default=True)
    is_recurring = Column(Boolean, default=True)
    frequency = Column(Enum(FeeFrequencyEnum, values_callable=lambda obj: [e.value for e in obj]), default=FeeFrequencyEnum.TERM)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    school = relationship("School")
    fee_structures = relationship("FeeStructure", back_populates="fee_type", cascade="all, delete-orphan")
    fee_balances = relationship("FeeBalance", back_populates="fee_type")

    def to_dict(self, with_counts=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'isMandatory': bool(self.is_mandatory),
            'isRecurring': bool(self.is_recurring),
            'frequency': self.frequency.value if self.frequency else None,
            'isActive': bool(self.is_active),
        }
        if with_counts:
            data['_count'] = {
                'feeStructures': len(self.fee_structures),
                'feeBalances': len(self.fee_balances),
            }
        return data

    def __repr__(self):
        return f"<FeeType {self.name}>"


# ===== FEE STRUCTURE MODEL =====

class FeeStructure(Base):
    """Amount a fee type charges for a class in an academic year, optionally split into terms"""
    __tablename__ = 'fee_structures'
    __table_args__ = (
        UniqueConstraint('academic_year_id', 'class_id', 'fee_type_id', name='unique_year_class_fee_type'),
        Index('idx_fee_structure_school', 'school_id'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    academic_year_id = Column(Integer, ForeignKey('academic_years.id', ondelete='CASCADE'), nullable=False)
    class_id = Column(Integer, ForeignKey('classes.id', ondelete='CASCADE'), nullable=False)
    fee_type_id = Column(Integer, ForeignKey('fee_types.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    term1_amount = Column(Numeric(12, 2), default=Decimal('0.00'))
    term2_amount = Column(Numeric(12, 2), default=Decimal('0.00'))
    term3_amount = Column(Numeric(12, 2), default=Decimal('0.00'))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    academic_year = relationship("AcademicYear")
    school_class = relationship("SchoolClass")
    fee_type = relationship("FeeType", back_populates="fee_structures")

    def amount_for_term(self, term_order=None) -> Decimal:
        """Charge for a term (1..3); falls back to the full amount when no split is set"""
        if term_order in (1, 2, 3):
            term_amount = getattr(self, f'term{term_order}_amount')
            if term_amount:
                return Decimal(term_amount)
        return Decimal(self.amount or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'academicYearId': self.academic_year_id,
            'classId': self.class_id,
            'feeTypeId': self.fee_type_id,
            'amount': money(self.amount),
            'term1Amount': money(self.term1_amount),
            'term2Amount': money(self.term2_amount),
            'term3Amount': money(self.term3_amount),
            'isActive': bool(self.is_active),
            'academicYear': self.academic_year.to_dict() if self.academic_year else None,
            'class': self.school_class.to_dict() if self.school_class else None,
            'feeType': self.fee_type.to_dict() if self.fee_type else None,
        }

    def __repr__(self):
        return f"<FeeStructure class={self.class_id} fee_type={self.fee_type_id} amount={self.amount}>"


# ===== FEE BALANCE MODEL =====

class FeeBalance(Base):
    """Running charged/paid/balance totals per student, academic year, term and fee type"""
    __tablename__ = 'fee_balances'
    __table_args__ = (
        UniqueConstraint('student_id', 'academic_year_id', 'term_id', 'fee_type_id', name='unique_student_fee_balance'),
        Index('idx_fee_balance_school', 'school_id'),
        Index('idx_fee_balance_student', 'student_id'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(Integer, ForeignKey('students.id', ondelete='CASCADE'), nullable=False)
    academic_year_id = Column(Integer, ForeignKey('academic_years.id', ondelete='CASCADE'), nullable=False)
    term_id = Column(Integer, ForeignKey('terms.id', ondelete='SET NULL'), nullable=True)
    fee_type_id = Column(Integer, ForeignKey('fee_types.id', ondelete='CASCADE'), nullable=False)
    amount_charged = Column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    amount_paid = Column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    due_date = Column(Date, nullable=True)
    status = Column(Enum(BalanceStatusEnum, values_callable=lambda obj: [e.value for e in obj]), default=BalanceStatusEnum.UNPAID)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    student = relationship("Student", back_populates="fee_balances")
    academic_year = relationship("AcademicYear")
    term = relationship("Term")
    fee_type = relationship("FeeType", back_populates="fee_balances")

    @property
    def is_overdue(self):
        return bool(self.due_date and date.today() > self.due_date and (self.balance or 0) > 0)

    def to_dict(self, include_student=True):
        data = {
            'id': self.id,
            'studentId': self.student_id,
            'academicYearId': self.academic_year_id,
            'termId': self.term_id,
            'feeTypeId': self.fee_type_id,
            'amountCharged': money(self.amount_charged),
            'amountPaid': money(self.amount_paid),
            'balance': money(self.balance),
            'dueDate': iso(self.due_date),
            'status': self.status.value if self.status else None,
            'academicYear': self.academic_year.to_dict() if self.academic_year else None,
            'term': self.term.to_dict() if self.term else None,
            'feeType': self.fee_type.to_dict() if self.fee_type else None,
        }
        if include_student and self.student:
            data['student'] = {
                'id': self.student.id,
                'admissionNumber': self.student.admission_number,
                'firstName': self.student.first_name,
                'lastName': self.student.last_name,
                'class': self.student.student_class.name if self.student.student_class else None,
            }
        return data

    def __repr__(self):
        return f"<FeeBalance student={self.student_id} fee_type={self.fee_type_id} balance={self.balance}>"


# ===== PAYMENT METHOD MODEL =====

class PaymentMethod(Base):
    __tablename__ = 'payment_methods'
    __table_args__ = (
        UniqueConstraint('school_id', 'name_key', name='unique_school_payment_method'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(50), nullable=False)
    name_key = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'isActive': bool(self.is_active),
        }

    def __repr__(self):
        return f"<PaymentMethod {self.name}>"


# ===== PAYMENT MODELS =====

class FeePayment(Base):
    """A receipt-bearing payment event, apportioned across fee types by PaymentDetail rows"""
    __tablename__ = 'fee_payments'
    __table_args__ = (
        UniqueConstraint('school_id', 'receipt_number', name='unique_school_receipt_number'),
        Index('idx_fee_payment_school', 'school_id'),
        Index('idx_fee_payment_student', 'student_id'),
        Index('idx_fee_payment_date', 'payment_date'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(Integer, ForeignKey('students.id', ondelete='CASCADE'), nullable=False)
    academic_year_id = Column(Integer, ForeignKey('academic_years.id'), nullable=False)
    term_id = Column(Integer, ForeignKey('terms.id', ondelete='SET NULL'), nullable=True)
    payment_method_id = Column(Integer, ForeignKey('payment_methods.id', ondelete='SET NULL'), nullable=True)
    receipt_number = Column(String(50), nullable=False)
    payment_date = Column(Date, nullable=False, default=date.today)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(80), default='system')
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    student = relationship("Student", back_populates="fee_payments")
    academic_year = relationship("AcademicYear")
    term = relationship("Term")
    payment_method = relationship("PaymentMethod")
    payment_details = relationship("PaymentDetail", back_populates="payment", cascade="all, delete-orphan")
    receipts = relationship("Receipt", back_populates="payment", cascade="all, delete-orphan")
    photo_receipts = relationship("PhotoReceipt", back_populates="payment", cascade="all, delete-orphan")

    def to_dict(self, include_student=True):
        data = {
            'id': self.id,
            'studentId': self.student_id,
            'academicYearId': self.academic_year_id,
            'termId': self.term_id,
            'paymentMethodId': self.payment_method_id,
            'receiptNumber': self.receipt_number,
            'paymentDate': iso(self.payment_date),
            'amountPaid': money(self.amount_paid),
            'referenceNumber': self.reference_number,
            'notes': self.notes,
            'createdBy': self.created_by,
            'academicYear': self.academic_year.to_dict() if self.academic_year else None,
            'term': self.term.to_dict() if self.term else None,
            'paymentMethod': self.payment_method.to_dict() if self.payment_method else None,
            'paymentDetails': [d.to_dict() for d in self.payment_details],
        }
        if include_student and self.student:
            data['student'] = {
                'id': self.student.id,
                'admissionNumber': self.student.admission_number,
                'firstName': self.student.first_name,
                'lastName': self.student.last_name,
                'class': self.student.student_class.to_dict() if self.student.student_class else None,
            }
        return data

    def __repr__(self):
        return f"<FeePayment {self.receipt_number} amount={self.amount_paid}>"


class PaymentDetail(Base):
    """Fee-type-tagged line item of a payment"""
    __tablename__ = 'payment_details'

    id = Column(Integer, primary_key=True)
    payment_id = Column(Integer, ForeignKey('fee_payments.id', ondelete='CASCADE'), nullable=False)
    fee_type_id = Column(Integer, ForeignKey('fee_types.id'), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    # Relationships
    payment = relationship("FeePayment", back_populates="payment_details")
    fee_type = relationship("FeeType")

    def to_dict(self):
        return {
            'id': self.id,
            'paymentId': self.payment_id,
            'feeTypeId': self.fee_type_id,
            'amount': money(self.amount),
            'feeType': self.fee_type.to_dict() if self.fee_type else None,
        }


# ===== RECEIPT MODELS =====

class Receipt(Base):
    __tablename__ = 'receipts'

    id = Column(Integer, primary_key=True)
    payment_id = Column(Integer, ForeignKey('fee_payments.id', ondelete='CASCADE'), nullable=False)
    receipt_number = Column(String(50), nullable=False)
    format = Column(Enum(ReceiptFormatEnum, values_callable=lambda obj: [e.value for e in obj]), default=ReceiptFormatEnum.PDF)
    file_path = Column(String(500), nullable=True)
    generated_at = Column(DateTime, default=datetime.utcnow)

    payment = relationship("FeePayment", back_populates="receipts")

    def to_dict(self):
        return {
            'id': self.id,
            'paymentId': self.payment_id,
            'receiptNumber': self.receipt_number,
            'format': self.format.value if self.format else None,
            'generatedAt': iso(self.generated_at),
            'downloadUrl': f"/api/receipts/{self.id}/download",
        }


class PhotoReceipt(Base):
    """Photographed paper receipt attached to a payment"""
    __tablename__ = 'photo_receipts'

    id = Column(Integer, primary_key=True)
    payment_id = Column(Integer, ForeignKey('fee_payments.id', ondelete='CASCADE'), nullable=False)
    receipt_number = Column(String(50), nullable=False)
    photo_path = Column(String(500), nullable=False)
    notes = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)
    capture_date = Column(DateTime, nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)

    payment = relationship("FeePayment", back_populates="photo_receipts")

    def to_dict(self):
        student = self.payment.student if self.payment else None
        return {
            'id': self.id,
            'paymentId': self.payment_id,
            'receiptNumber': self.receipt_number,
            'photoPath': self.photo_path,
            'notes': self.notes,
            'amount': money(self.amount) if self.amount is not None else None,
            'paymentMethod': self.payment_method,
            'captureDate': iso(self.capture_date),
            'uploadedAt': iso(self.uploaded_at),
            'student': {
                'firstName': student.first_name,
                'lastName': student.last_name,
                'admissionNumber': student.admission_number,
            } if student else None,
        }
