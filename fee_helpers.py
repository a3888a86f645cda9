"""
Fee Management Helper Functions
Contains business logic for balance bookkeeping, receipt generation and student fee statistics
"""

from datetime import date, datetime
from decimal import Decimal
import io

from flask import render_template_string
from sqlalchemy import func
from sqlalchemy.orm import Session
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from models import Student, StudentStatusEnum, Term
from fee_models import (
    FeeStructure, FeeBalance, FeePayment, BalanceStatusEnum
)

ZERO = Decimal('0.00')


# ===== RECEIPT NUMBER GENERATION =====

def generate_receipt_number(session: Session, school_id: int, on_date: date = None) -> str:
    """Generate unique receipt number for school, e.g. RCP-202501-00007"""
    on_date = on_date or date.today()
    prefix = f"RCP-{on_date.year}{on_date.month:02d}"

    # Get count of receipts for the month
    count = session.query(func.count(FeePayment.id)).filter(
        FeePayment.school_id == school_id,
        FeePayment.receipt_number.like(f"{prefix}-%")
    ).scalar() or 0

    receipt_number = f"{prefix}-{count + 1:05d}"

    # Ensure uniqueness
    while session.query(FeePayment.id).filter_by(receipt_number=receipt_number, school_id=school_id).first():
        count += 1
        receipt_number = f"{prefix}-{count + 1:05d}"

    return receipt_number


# ===== BALANCE HELPERS =====

def determine_balance_status(amount_paid, balance, due_date: date = None) -> BalanceStatusEnum:
    """Determine balance status based on payment and due date"""
    if Decimal(balance or 0) <= 0:
        return BalanceStatusEnum.PAID
    elif due_date and date.today() > due_date:
        return BalanceStatusEnum.OVERDUE
    elif Decimal(amount_paid or 0) > 0:
        return BalanceStatusEnum.PARTIAL
    else:
        return BalanceStatusEnum.UNPAID


def refresh_balance(fee_balance: FeeBalance):
    """Recompute status after amounts changed"""
    fee_balance.status = determine_balance_status(fee_balance.amount_paid, fee_balance.balance, fee_balance.due_date)
    return fee_balance


def find_fee_structure(session: Session, school_id: int, academic_year_id: int, class_id: int, fee_type_id: int):
    return session.query(FeeStructure).filter_by(
        school_id=school_id,
        academic_year_id=academic_year_id,
        class_id=class_id,
        fee_type_id=fee_type_id,
    ).first()


def apply_payment_to_balances(session: Session, payment: FeePayment, student: Student) -> list:
    """
    Upsert one FeeBalance per payment detail

    An existing balance gets amountPaid incremented and balance decremented; a
    missing one is created with amountCharged taken from the class fee structure
    (0 when the class has none). Runs inside the caller's transaction.
    """
    term = session.get(Term, payment.term_id) if payment.term_id else None
    touched = []

    for detail in payment.payment_details:
        amount = Decimal(detail.amount)
        fee_balance = session.query(FeeBalance).filter_by(
            student_id=student.id,
            academic_year_id=payment.academic_year_id,
            term_id=payment.term_id,
            fee_type_id=detail.fee_type_id,
        ).first()

        if fee_balance:
            fee_balance.amount_paid = Decimal(fee_balance.amount_paid or 0) + amount
            fee_balance.balance = Decimal(fee_balance.balance or 0) - amount
        else:
            structure = find_fee_structure(session, payment.school_id, payment.academic_year_id,
                                           student.class_id, detail.fee_type_id)
            charged = structure.amount_for_term(term.order if term else None) if structure else ZERO
            fee_balance = FeeBalance(
                school_id=payment.school_id,
                student_id=student.id,
                academic_year_id=payment.academic_year_id,
                term_id=payment.term_id,
                fee_type_id=detail.fee_type_id,
                amount_charged=charged,
                amount_paid=amount,
                balance=charged - amount,
            )
            session.add(fee_balance)

        refresh_balance(fee_balance)
        # Two details for one fee type must hit the same row
        session.flush()
        touched.append(fee_balance)

    return touched


def apply_fee_structure(session: Session, structure: FeeStructure, term: Term = None, due_date: date = None) -> dict:
    """Charge a fee structure to every active student of its class and year"""
    students = session.query(Student).filter_by(
        school_id=structure.school_id,
        class_id=structure.class_id,
        academic_year_id=structure.academic_year_id,
        status=StudentStatusEnum.ACTIVE,
    ).all()

    term_id = term.id if term else None
    charge = structure.amount_for_term(term.order if term else None)
    created = 0
    skipped = 0

    for student in students:
        exists = session.query(FeeBalance.id).filter_by(
            student_id=student.id,
            academic_year_id=structure.academic_year_id,
            term_id=term_id,
            fee_type_id=structure.fee_type_id,
        ).first()
        if exists:
            skipped += 1
            continue

        fee_balance = FeeBalance(
            school_id=structure.school_id,
            student_id=student.id,
            academic_year_id=structure.academic_year_id,
            term_id=term_id,
            fee_type_id=structure.fee_type_id,
            amount_charged=charge,
            amount_paid=ZERO,
            balance=charge,
            due_date=due_date,
        )
        refresh_balance(fee_balance)
        session.add(fee_balance)
        created += 1

    return {'created': created, 'skipped': skipped, 'studentCount': len(students)}


def summarize_balances(balances) -> dict:
    """Charged/paid/outstanding totals over a list of FeeBalance rows"""
    total_charged = sum((Decimal(b.amount_charged or 0) for b in balances), ZERO)
    total_paid = sum((Decimal(b.amount_paid or 0) for b in balances), ZERO)
    total_balance = sum((Decimal(b.balance or 0) for b in balances), ZERO)
    return {
        'totalCharged': float(total_charged),
        'totalPaid': float(total_paid),
        'totalBalance': float(total_balance),
        'count': len(balances),
    }


# ===== STUDENT FEE STATISTICS =====

def get_student_fee_statistics(student: Student) -> dict:
    """Totals across all balances of a student plus the most recent payment date"""
    balances = list(student.fee_balances)
    payments = list(student.fee_payments)

    total_charged = sum((Decimal(b.amount_charged or 0) for b in balances), ZERO)
    total_paid = sum((Decimal(p.amount_paid or 0) for p in payments), ZERO)
    outstanding = sum((Decimal(b.balance or 0) for b in balances), ZERO)
    last_payment = max((p.payment_date for p in payments if p.payment_date), default=None)

    return {
        'totalCharged': float(total_charged),
        'totalPaid': float(total_paid),
        'outstandingBalance': float(outstanding),
        'lastPaymentDate': last_payment.isoformat() if last_payment else None,
    }


def build_student_statement(student: Student) -> dict:
    """Per-fee-type balance lines and payment history for one student"""
    lines = {}
    for b in student.fee_balances:
        key = b.fee_type.name if b.fee_type else str(b.fee_type_id)
        line = lines.setdefault(key, {'feeType': key, 'charged': ZERO, 'paid': ZERO, 'balance': ZERO, 'entries': []})
        line['charged'] += Decimal(b.amount_charged or 0)
        line['paid'] += Decimal(b.amount_paid or 0)
        line['balance'] += Decimal(b.balance or 0)
        line['entries'].append({
            'academicYear': b.academic_year.year if b.academic_year else None,
            'term': b.term.name if b.term else None,
            'amountCharged': float(b.amount_charged or 0),
            'amountPaid': float(b.amount_paid or 0),
            'balance': float(b.balance or 0),
            'status': b.status.value if b.status else None,
            'dueDate': b.due_date.isoformat() if b.due_date else None,
        })

    fee_lines = []
    for line in sorted(lines.values(), key=lambda l: l['feeType']):
        fee_lines.append({
            'feeType': line['feeType'],
            'charged': float(line['charged']),
            'paid': float(line['paid']),
            'balance': float(line['balance']),
            'entries': line['entries'],
        })

    return {
        'student': {
            'id': student.id,
            'admissionNumber': student.admission_number,
            'name': student.full_name,
            'class': student.student_class.name if student.student_class else None,
            'academicYear': student.academic_year.year if student.academic_year else None,
        },
        'feeLines': fee_lines,
        'payments': [
            {
                'id': p.id,
                'receiptNumber': p.receipt_number,
                'paymentDate': p.payment_date.isoformat() if p.payment_date else None,
                'amountPaid': float(p.amount_paid or 0),
                'paymentMethod': p.payment_method.name if p.payment_method else None,
                'details': [
                    {'feeType': d.fee_type.name if d.fee_type else None, 'amount': float(d.amount)}
                    for d in p.payment_details
                ],
            }
            for p in student.fee_payments
        ],
        'totals': get_student_fee_statistics(student),
        'generatedAt': datetime.utcnow().isoformat(),
    }


# ===== RECEIPTS =====

def build_receipt_data(payment: FeePayment, settings=None) -> dict:
    """Flatten a payment into the fields printed on a receipt"""
    student = payment.student
    school = student.school if student else None
    details = [
        {'feeType': d.fee_type.name if d.fee_type else None, 'amount': float(d.amount)}
        for d in payment.payment_details
    ]

    return {
        'receiptNumber': payment.receipt_number,
        'paymentDate': payment.payment_date.isoformat() if payment.payment_date else None,
        'studentName': student.full_name if student else None,
        'admissionNumber': student.admission_number if student else None,
        'class': student.student_class.name if student and student.student_class else None,
        'academicYear': payment.academic_year.year if payment.academic_year else None,
        'term': payment.term.name if payment.term else None,
        'amountPaid': float(payment.amount_paid),
        'paymentMethod': payment.payment_method.name if payment.payment_method else None,
        'referenceNumber': payment.reference_number,
        'schoolName': school.name if school else None,
        'schoolAddress': school.address if school else None,
        'schoolPhone': school.phone if school else None,
        'schoolEmail': school.email if school else None,
        'paymentDetails': details,
        'totalAmount': float(sum((Decimal(d.amount) for d in payment.payment_details), ZERO)),
        'currencySymbol': settings.currency_symbol if settings else '$',
        'footer': settings.receipt_footer if settings else None,
    }


RECEIPT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Receipt - {{ r.receiptNumber }}</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }
        .receipt { max-width: 800px; margin: 0 auto; background: white; padding: 30px; border-radius: 10px; }
        .header { text-align: center; border-bottom: 2px solid #333; padding-bottom: 20px; margin-bottom: 30px; }
        .school-name { font-size: 24px; font-weight: bold; }
        .school-details, .info-value { color: #666; font-size: 14px; }
        .student-info { display: grid; grid-template-columns: 1fr 1fr; gap: 20px; margin-bottom: 30px; }
        .info-label { font-weight: bold; }
        table { width: 100%; border-collapse: collapse; }
        th, td { padding: 10px; border-bottom: 1px solid #ddd; text-align: left; }
        .amount { text-align: right; }
        .total td { font-weight: bold; border-top: 2px solid #333; }
        .footer { text-align: center; margin-top: 30px; color: #666; font-size: 12px; }
    </style>
</head>
<body>
<div class="receipt">
    <div class="header">
        <div class="school-name">{{ r.schoolName or '' }}</div>
        <div class="school-details">{{ r.schoolAddress or '' }}</div>
        <div class="school-details">{{ r.schoolPhone or '' }} {{ r.schoolEmail or '' }}</div>
        <h2>PAYMENT RECEIPT</h2>
        <div>Receipt No: {{ r.receiptNumber }}</div>
    </div>
    <div class="student-info">
        <div><div class="info-label">Student Name</div><div class="info-value">{{ r.studentName }}</div></div>
        <div><div class="info-label">Admission Number</div><div class="info-value">{{ r.admissionNumber }}</div></div>
        <div><div class="info-label">Class</div><div class="info-value">{{ r.class or 'N/A' }}</div></div>
        <div><div class="info-label">Academic Year</div><div class="info-value">{{ r.academicYear or 'N/A' }}</div></div>
        <div><div class="info-label">Term</div><div class="info-value">{{ r.term or 'N/A' }}</div></div>
        <div><div class="info-label">Payment Date</div><div class="info-value">{{ r.paymentDate }}</div></div>
        <div><div class="info-label">Payment Method</div><div class="info-value">{{ r.paymentMethod or 'N/A' }}</div></div>
        {% if r.referenceNumber %}
        <div><div class="info-label">Reference Number</div><div class="info-value">{{ r.referenceNumber }}</div></div>
        {% endif %}
    </div>
    <table>
        <thead><tr><th>Fee Type</th><th class="amount">Amount</th></tr></thead>
        <tbody>
        {% for d in r.paymentDetails %}
            <tr><td>{{ d.feeType }}</td><td class="amount">{{ r.currencySymbol }}{{ '{:,.2f}'.format(d.amount) }}</td></tr>
        {% endfor %}
            <tr class="total"><td>Total</td><td class="amount">{{ r.currencySymbol }}{{ '{:,.2f}'.format(r.totalAmount) }}</td></tr>
        </tbody>
    </table>
    <div class="footer">{{ r.footer or '' }}</div>
</div>
</body>
</html>
"""


def render_receipt_html(receipt_data: dict) -> str:
    return render_template_string(RECEIPT_TEMPLATE, r=receipt_data)


def render_receipt_pdf(receipt_data: dict) -> io.BytesIO:
    """Draw a one-page A4 receipt and return it as an in-memory buffer"""
    buffer = io.BytesIO()
    p = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    currency = receipt_data.get('currencySymbol') or ''

    # Header
    p.setFont("Helvetica-Bold", 20)
    p.drawCentredString(width / 2, height - 50, receipt_data.get('schoolName') or 'School')
    p.setFont("Helvetica", 10)
    contact = " | ".join(v for v in (receipt_data.get('schoolAddress'), receipt_data.get('schoolPhone'),
                                     receipt_data.get('schoolEmail')) if v)
    if contact:
        p.drawCentredString(width / 2, height - 66, contact)
    p.setFont("Helvetica", 12)
    p.drawCentredString(width / 2, height - 86, "Fee Receipt")

    # Receipt details
    y = height - 130
    p.setFont("Helvetica-Bold", 12)
    p.drawString(50, y, f"Receipt No: {receipt_data['receiptNumber']}")
    p.drawRightString(width - 50, y, f"Date: {receipt_data.get('paymentDate') or ''}")

    y -= 30
    p.setFont("Helvetica", 11)
    p.drawString(50, y, f"Student Name: {receipt_data.get('studentName') or ''}")
    y -= 20
    p.drawString(50, y, f"Admission No: {receipt_data.get('admissionNumber') or ''}")
    p.drawString(300, y, f"Class: {receipt_data.get('class') or 'N/A'}")
    y -= 20
    p.drawString(50, y, f"Academic Year: {receipt_data.get('academicYear') or 'N/A'}")
    p.drawString(300, y, f"Term: {receipt_data.get('term') or 'N/A'}")

    # Payment details
    y -= 40
    p.setFont("Helvetica-Bold", 11)
    p.drawString(50, y, "Fee Type")
    p.drawRightString(width - 50, y, "Amount")
    y -= 20
    p.setFont("Helvetica", 11)
    for detail in receipt_data.get('paymentDetails', []):
        p.drawString(50, y, str(detail.get('feeType') or ''))
        p.drawRightString(width - 50, y, f"{currency}{detail['amount']:,.2f}")
        y -= 20

    p.line(50, y + 10, width - 50, y + 10)
    p.setFont("Helvetica-Bold", 11)
    p.drawString(50, y - 5, "Total")
    p.drawRightString(width - 50, y - 5, f"{currency}{receipt_data['totalAmount']:,.2f}")

    y -= 40
    p.setFont("Helvetica", 11)
    p.drawString(50, y, f"Payment Method: {receipt_data.get('paymentMethod') or 'N/A'}")
    if receipt_data.get('referenceNumber'):
        y -= 20
        p.drawString(50, y, f"Reference No: {receipt_data['referenceNumber']}")

    # Footer
    p.setFont("Helvetica", 9)
    p.drawCentredString(width / 2, 50, receipt_data.get('footer') or "This is a computer-generated receipt")

    p.showPage()
    p.save()

    buffer.seek(0)
    return buffer


# ===== DASHBOARD =====

def get_dashboard_stats(session: Session, school_id: int) -> dict:
    """Headline numbers for the school admin dashboard"""
    total_students = session.query(func.count(Student.id)).filter(
        Student.school_id == school_id,
        Student.status == StudentStatusEnum.ACTIVE
    ).scalar() or 0

    total_charged = session.query(func.coalesce(func.sum(FeeBalance.amount_charged), 0)).filter(
        FeeBalance.school_id == school_id
    ).scalar() or 0
    total_outstanding = session.query(func.coalesce(func.sum(FeeBalance.balance), 0)).filter(
        FeeBalance.school_id == school_id,
        FeeBalance.balance > 0
    ).scalar() or 0
    total_collected = session.query(func.coalesce(func.sum(FeePayment.amount_paid), 0)).filter(
        FeePayment.school_id == school_id
    ).scalar() or 0
    payment_count = session.query(func.count(FeePayment.id)).filter(
        FeePayment.school_id == school_id
    ).scalar() or 0

    today = date.today()
    month_start = today.replace(day=1)
    collected_this_month = session.query(func.coalesce(func.sum(FeePayment.amount_paid), 0)).filter(
        FeePayment.school_id == school_id,
        FeePayment.payment_date >= month_start
    ).scalar() or 0

    recent_payments = session.query(FeePayment).filter_by(school_id=school_id).order_by(
        FeePayment.payment_date.desc(), FeePayment.id.desc()
    ).limit(5).all()

    top_outstanding = session.query(FeeBalance).filter(
        FeeBalance.school_id == school_id,
        FeeBalance.balance > 0
    ).order_by(FeeBalance.balance.desc()).limit(5).all()

    collection_rate = (float(total_collected) / float(total_charged) * 100) if float(total_charged) > 0 else 0

    return {
        'totalStudents': total_students,
        'totalCharged': float(total_charged),
        'totalCollected': float(total_collected),
        'totalOutstanding': float(total_outstanding),
        'collectedThisMonth': float(collected_this_month),
        'paymentCount': payment_count,
        'collectionRate': f"{collection_rate:.2f}" if collection_rate else '0',
        'recentPayments': [p.to_dict() for p in recent_payments],
        'topOutstanding': [b.to_dict() for b in top_outstanding],
    }
