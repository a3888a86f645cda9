"""
Report generation for the school fee reports page
Each report fetches already-filtered rows and reduces them in Python
"""

from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session, joinedload, selectinload

from models import Student
from fee_models import FeeBalance, FeePayment, PaymentDetail
from fee_helpers import ZERO

logger = logging.getLogger(__name__)

REPORT_TYPES = ('financial', 'student', 'payment', 'balance')


def format_rate(numerator, denominator) -> str:
    """Percentage as a 2-dp string; '0' when there is nothing to divide by"""
    if not denominator or Decimal(denominator) <= 0:
        return '0'
    return f"{(Decimal(numerator) / Decimal(denominator) * 100):.2f}"


def format_average(total, count) -> str:
    if not count:
        return '0'
    return f"{(Decimal(total) / count):.2f}"


def _add(bucket: dict, key, amount):
    bucket[key] = bucket.get(key, ZERO) + Decimal(amount or 0)


def _floats(bucket: dict) -> dict:
    return {k: float(v) for k, v in bucket.items()}


def _payment_query(session, school_id, filters):
    query = session.query(FeePayment).filter(FeePayment.school_id == school_id)
    if filters.get('academic_year_id'):
        query = query.filter(FeePayment.academic_year_id == filters['academic_year_id'])
    if filters.get('class_id'):
        query = query.join(Student, FeePayment.student_id == Student.id).filter(Student.class_id == filters['class_id'])
    if filters.get('start_date'):
        query = query.filter(FeePayment.payment_date >= filters['start_date'])
    if filters.get('end_date'):
        query = query.filter(FeePayment.payment_date <= filters['end_date'])
    return query


def _balance_query(session, school_id, filters):
    query = session.query(FeeBalance).filter(FeeBalance.school_id == school_id)
    if filters.get('academic_year_id'):
        query = query.filter(FeeBalance.academic_year_id == filters['academic_year_id'])
    if filters.get('class_id'):
        query = query.join(Student, FeeBalance.student_id == Student.id).filter(Student.class_id == filters['class_id'])
    return query


def generate_financial_report(session: Session, school_id: int, filters: dict) -> dict:
    payments = _payment_query(session, school_id, filters).options(
        joinedload(FeePayment.student), joinedload(FeePayment.payment_method)
    ).order_by(FeePayment.payment_date.desc(), FeePayment.id.desc()).all()
    balances = _balance_query(session, school_id, filters).all()

    student_query = session.query(Student).filter(Student.school_id == school_id)
    if filters.get('class_id'):
        student_query = student_query.filter(Student.class_id == filters['class_id'])
    if filters.get('academic_year_id'):
        student_query = student_query.filter(Student.academic_year_id == filters['academic_year_id'])
    total_students = student_query.count()

    total_payments = sum((Decimal(p.amount_paid) for p in payments), ZERO)
    total_charged = sum((Decimal(b.amount_charged) for b in balances), ZERO)
    total_outstanding = sum((Decimal(b.balance) for b in balances), ZERO)

    by_method = {}
    by_month = {}
    for p in payments:
        _add(by_method, p.payment_method.name if p.payment_method else 'Unknown', p.amount_paid)
        _add(by_month, p.payment_date.strftime('%B %Y'), p.amount_paid)

    return {
        'summary': {
            'totalStudents': total_students,
            'totalCharged': float(total_charged),
            'totalPayments': float(total_payments),
            'totalOutstanding': float(total_outstanding),
            'collectionRate': format_rate(total_payments, total_charged),
        },
        'paymentsByMethod': _floats(by_method),
        'paymentsByMonth': _floats(by_month),
        'recentPayments': [
            {
                'id': p.id,
                'studentName': p.student.full_name if p.student else None,
                'amount': float(p.amount_paid),
                'paymentMethod': p.payment_method.name if p.payment_method else None,
                'paymentDate': p.payment_date.isoformat(),
                'receiptNumber': p.receipt_number,
            }
            for p in payments[:10]
        ],
    }


def generate_student_report(session: Session, school_id: int, filters: dict) -> dict:
    query = session.query(Student).filter(Student.school_id == school_id).options(
        joinedload(Student.student_class),
        joinedload(Student.academic_year),
        selectinload(Student.fee_balances),
        selectinload(Student.fee_payments),
    )
    if filters.get('academic_year_id'):
        query = query.filter(Student.academic_year_id == filters['academic_year_id'])
    if filters.get('class_id'):
        query = query.filter(Student.class_id == filters['class_id'])
    students = query.order_by(Student.last_name, Student.first_name).all()

    by_class = {}
    by_status = {}
    rows = []
    for student in students:
        charged = sum((Decimal(b.amount_charged) for b in student.fee_balances), ZERO)
        paid = sum((Decimal(p.amount_paid) for p in student.fee_payments), ZERO)
        outstanding = sum((Decimal(b.balance) for b in student.fee_balances), ZERO)

        if paid >= charged:
            status = 'PAID'
        elif paid > 0:
            status = 'PARTIAL'
        else:
            status = 'UNPAID'

        class_name = student.student_class.name if student.student_class else 'Unknown'
        by_class[class_name] = by_class.get(class_name, 0) + 1
        by_status[status] = by_status.get(status, 0) + 1

        rows.append({
            'id': student.id,
            'name': student.full_name,
            'admissionNumber': student.admission_number,
            'class': student.student_class.name if student.student_class else None,
            'academicYear': student.academic_year.year if student.academic_year else None,
            'totalCharged': float(charged),
            'totalPaid': float(paid),
            'outstandingBalance': float(outstanding),
        })

    return {
        'totalStudents': len(students),
        'studentsByClass': by_class,
        'studentsByStatus': by_status,
        'students': rows,
    }


def generate_payment_report(session: Session, school_id: int, filters: dict) -> dict:
    payments = _payment_query(session, school_id, filters).options(
        joinedload(FeePayment.student),
        joinedload(FeePayment.payment_method),
        selectinload(FeePayment.payment_details).joinedload(PaymentDetail.fee_type),
    ).order_by(FeePayment.payment_date.desc(), FeePayment.id.desc()).all()

    total_amount = sum((Decimal(p.amount_paid) for p in payments), ZERO)
    by_fee_type = {}
    for p in payments:
        for d in p.payment_details:
            _add(by_fee_type, d.fee_type.name if d.fee_type else 'Unknown', d.amount)

    return {
        'summary': {
            'totalPayments': len(payments),
            'totalAmount': float(total_amount),
            'averagePayment': format_average(total_amount, len(payments)),
        },
        'paymentsByFeeType': _floats(by_fee_type),
        'payments': [
            {
                'id': p.id,
                'receiptNumber': p.receipt_number,
                'studentName': p.student.full_name if p.student else None,
                'amount': float(p.amount_paid),
                'paymentMethod': p.payment_method.name if p.payment_method else None,
                'paymentDate': p.payment_date.isoformat(),
                'feeTypes': ', '.join(d.fee_type.name for d in p.payment_details if d.fee_type),
            }
            for p in payments
        ],
    }


def generate_balance_report(session: Session, school_id: int, filters: dict) -> dict:
    balances = _balance_query(session, school_id, filters).options(
        joinedload(FeeBalance.student), joinedload(FeeBalance.fee_type)
    ).all()

    total_charged = sum((Decimal(b.amount_charged) for b in balances), ZERO)
    total_paid = sum((Decimal(b.amount_paid) for b in balances), ZERO)
    total_outstanding = sum((Decimal(b.balance) for b in balances), ZERO)

    by_fee_type = {}
    for b in balances:
        name = b.fee_type.name if b.fee_type else 'Unknown'
        entry = by_fee_type.setdefault(name, {'charged': ZERO, 'paid': ZERO, 'outstanding': ZERO})
        entry['charged'] += Decimal(b.amount_charged)
        entry['paid'] += Decimal(b.amount_paid)
        entry['outstanding'] += Decimal(b.balance)

    overdue = [b for b in balances if b.is_overdue]

    return {
        'summary': {
            'totalCharged': float(total_charged),
            'totalPaid': float(total_paid),
            'totalOutstanding': float(total_outstanding),
            'overdueAmount': float(sum((Decimal(b.balance) for b in overdue), ZERO)),
            'overdueCount': len(overdue),
        },
        'balancesByFeeType': {name: _floats(v) for name, v in by_fee_type.items()},
        'overdueBalances': [
            {
                'id': b.id,
                'studentName': b.student.full_name if b.student else None,
                'feeType': b.fee_type.name if b.fee_type else None,
                'outstandingAmount': float(b.balance),
                'dueDate': b.due_date.isoformat() if b.due_date else None,
            }
            for b in overdue
        ],
    }


REPORT_GENERATORS = {
    'financial': generate_financial_report,
    'student': generate_student_report,
    'payment': generate_payment_report,
    'balance': generate_balance_report,
}


def generate_report(session: Session, school_id: int, report_type: str, filters: dict) -> dict:
    """Run one report type; raises ValueError for an unknown type"""
    generator = REPORT_GENERATORS.get(report_type)
    if generator is None:
        raise ValueError('Invalid report type')

    data = generator(session, school_id, filters)
    logger.info(f"Generated {report_type} report for school {school_id}")
    return {
        'reportType': report_type,
        'generatedAt': datetime.utcnow().isoformat(),
        **data,
    }
