"""
Bulk Operations Helper Functions
Student import (JSON or CSV) and flattened data export (JSON or CSV)
"""

import csv
import io
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from api_helpers import ApiError
from models import Student, SchoolClass, AcademicYear, StudentStatusEnum
from fee_models import FeeBalance, FeeStructure, FeePayment, PaymentDetail, BalanceStatusEnum

logger = logging.getLogger(__name__)

IMPORT_TEMPLATE_HEADERS = [
    'firstName', 'lastName', 'studentId', 'email', 'phone', 'dateOfBirth', 'gender', 'address',
    'parentName', 'parentPhone', 'parentEmail', 'classId', 'academicYearId', 'enrollmentDate', 'status'
]

EXPORT_FILENAMES = {
    'students': 'students-export',
    'payments': 'payments-export',
    'fee-balances': 'fee-balances-export',
    'fee-structures': 'fee-structures-export',
    'all': 'complete-export',
}


# ===== IMPORT =====

def read_student_csv(file_storage) -> list:
    """Parse an uploaded CSV into row dicts keyed by the template headers"""
    try:
        stream = io.StringIO(file_storage.stream.read().decode('utf-8-sig'), newline=None)
    except UnicodeDecodeError:
        raise ApiError('CSV file must be UTF-8 encoded')

    rows = []
    try:
        for raw in csv.DictReader(stream):
            row = {(k or '').strip(): (v or '').strip() for k, v in raw.items() if k}
            if any(row.values()):
                rows.append(row)
    except csv.Error as e:
        raise ApiError('Could not parse CSV file', details=str(e))
    return rows


def import_template_csv() -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(IMPORT_TEMPLATE_HEADERS)
    writer.writerow([
        'John', 'Doe', 'STU001', 'john.doe@example.com', '+1234567890', '2005-01-15', 'MALE',
        '123 Main St', 'Jane Doe', '+1234567891', 'jane.doe@example.com', '1', '1', '2024-09-01', 'ACTIVE'
    ])
    return output.getvalue()


def check_references(session: Session, school_id: int, rows) -> list:
    """Row-indexed errors for class / academic year ids that do not exist in the school"""
    class_ids = {r.class_id for r in rows}
    year_ids = {r.academic_year_id for r in rows}

    existing_classes = {cid for (cid,) in session.query(SchoolClass.id).filter(
        SchoolClass.school_id == school_id, SchoolClass.id.in_(class_ids)
    )}
    existing_years = {yid for (yid,) in session.query(AcademicYear.id).filter(
        AcademicYear.school_id == school_id, AcademicYear.id.in_(year_ids)
    )}

    errors = []
    for index, row in enumerate(rows, start=1):
        if row.class_id not in existing_classes:
            errors.append({'row': index, 'field': 'classId', 'message': f'Class with ID {row.class_id} not found'})
        if row.academic_year_id not in existing_years:
            errors.append({'row': index, 'field': 'academicYearId',
                           'message': f'Academic year with ID {row.academic_year_id} not found'})
    return errors


def find_duplicates(session: Session, school_id: int, rows) -> list:
    """Student ids already stored in the school or repeated within the batch"""
    ids = [r.student_id for r in rows]
    stored = {num for (num,) in session.query(Student.admission_number).filter(
        Student.school_id == school_id, Student.admission_number.in_(set(ids))
    )}

    duplicates = []
    seen = set()
    for index, student_id in enumerate(ids, start=1):
        if student_id in stored or student_id in seen:
            duplicates.append({'row': index, 'studentId': student_id})
        seen.add(student_id)
    return duplicates


def import_students(session: Session, school_id: int, rows) -> dict:
    """
    Import validated StudentImportRow objects

    Reference errors reject the whole batch, then duplicates do. Remaining rows
    are inserted one savepoint each so a failing row only loses itself.
    """
    reference_errors = check_references(session, school_id, rows)
    if reference_errors:
        raise ApiError('Validation errors found', 400, validationErrors=reference_errors)

    duplicates = find_duplicates(session, school_id, rows)
    if duplicates:
        raise ApiError('Duplicate student IDs found', 400, duplicates=duplicates)

    classes = {c.id: c for c in session.query(SchoolClass).filter(
        SchoolClass.id.in_({r.class_id for r in rows}))}
    years = {y.id: y for y in session.query(AcademicYear).filter(
        AcademicYear.id.in_({r.academic_year_id for r in rows}))}

    imported = []
    errors = []
    for index, row in enumerate(rows, start=1):
        data = row.model_dump(exclude={'student_id'}, exclude_none=True)
        student = Student(school_id=school_id, admission_number=row.student_id, **data)
        try:
            with session.begin_nested():
                session.add(student)
                session.flush()
        except SQLAlchemyError as e:
            logger.warning(f"Import row {index} ({row.student_id}) failed: {e}")
            errors.append({'row': index, 'studentId': row.student_id, 'error': str(getattr(e, 'orig', e))})
            continue

        imported.append({
            'id': student.id,
            'studentId': student.admission_number,
            'name': student.full_name,
            'class': classes[row.class_id].name,
            'academicYear': years[row.academic_year_id].year,
        })

    session.commit()
    logger.info(f"Imported {len(imported)} students for school {school_id} ({len(errors)} failed)")

    return {
        'success': True,
        'message': f'Successfully imported {len(imported)} students',
        'importedCount': len(imported),
        'errorCount': len(errors),
        'errors': errors,
        'students': imported,
    }


# ===== EXPORT =====

def _day(value):
    return value.isoformat() if value else ''


def _status(enum_cls, value):
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise ApiError(f"Invalid status filter '{value}'")


def export_students(session: Session, school_id: int, filters) -> list:
    query = session.query(Student).options(
        joinedload(Student.student_class), joinedload(Student.academic_year)
    ).filter(Student.school_id == school_id)
    if filters.class_id:
        query = query.filter(Student.class_id == filters.class_id)
    if filters.academic_year_id:
        query = query.filter(Student.academic_year_id == filters.academic_year_id)
    if filters.status:
        query = query.filter(Student.status == _status(StudentStatusEnum, filters.status))

    return [{
        'Student ID': s.admission_number,
        'First Name': s.first_name,
        'Last Name': s.last_name,
        'Email': s.email or '',
        'Phone': s.phone or '',
        'Date of Birth': _day(s.date_of_birth),
        'Gender': s.gender.value if s.gender else '',
        'Address': s.address or '',
        'Parent Name': s.parent_name or '',
        'Parent Phone': s.parent_phone or '',
        'Parent Email': s.parent_email or '',
        'Class': s.student_class.name if s.student_class else '',
        'Academic Year': s.academic_year.year if s.academic_year else '',
        'Enrollment Date': _day(s.enrollment_date),
        'Status': s.status.value if s.status else '',
        'Created At': s.created_at.isoformat() if s.created_at else '',
    } for s in query.order_by(Student.last_name, Student.first_name, Student.id).all()]


def export_payments(session: Session, school_id: int, filters) -> list:
    query = session.query(FeePayment).options(
        joinedload(FeePayment.student).joinedload(Student.student_class),
        joinedload(FeePayment.academic_year),
        joinedload(FeePayment.payment_method),
        selectinload(FeePayment.payment_details).joinedload(PaymentDetail.fee_type),
    ).filter(FeePayment.school_id == school_id)
    if filters.class_id:
        query = query.join(Student, FeePayment.student_id == Student.id).filter(Student.class_id == filters.class_id)
    if filters.academic_year_id:
        query = query.filter(FeePayment.academic_year_id == filters.academic_year_id)
    if filters.start_date:
        query = query.filter(FeePayment.payment_date >= filters.start_date)
    if filters.end_date:
        query = query.filter(FeePayment.payment_date <= filters.end_date)

    return [{
        'Receipt Number': p.receipt_number,
        'Student ID': p.student.admission_number if p.student else '',
        'Student Name': p.student.full_name if p.student else '',
        'Class': p.student.student_class.name if p.student and p.student.student_class else '',
        'Academic Year': p.academic_year.year if p.academic_year else '',
        'Amount': float(p.amount_paid),
        'Payment Method': p.payment_method.name if p.payment_method else '',
        'Payment Date': _day(p.payment_date),
        'Fee Types': ', '.join(d.fee_type.name for d in p.payment_details if d.fee_type),
    } for p in query.order_by(FeePayment.payment_date.desc(), FeePayment.id.desc()).all()]


def export_fee_balances(session: Session, school_id: int, filters) -> list:
    query = session.query(FeeBalance).options(
        joinedload(FeeBalance.student).joinedload(Student.student_class),
        joinedload(FeeBalance.academic_year),
        joinedload(FeeBalance.term),
        joinedload(FeeBalance.fee_type),
    ).filter(FeeBalance.school_id == school_id)
    if filters.class_id:
        query = query.join(Student, FeeBalance.student_id == Student.id).filter(Student.class_id == filters.class_id)
    if filters.academic_year_id:
        query = query.filter(FeeBalance.academic_year_id == filters.academic_year_id)
    if filters.status:
        query = query.filter(FeeBalance.status == _status(BalanceStatusEnum, filters.status))

    return [{
        'Student ID': b.student.admission_number if b.student else '',
        'Student Name': b.student.full_name if b.student else '',
        'Class': b.student.student_class.name if b.student and b.student.student_class else '',
        'Academic Year': b.academic_year.year if b.academic_year else '',
        'Fee Type': b.fee_type.name if b.fee_type else '',
        'Term': b.term.name if b.term else '',
        'Amount Charged': float(b.amount_charged),
        'Amount Paid': float(b.amount_paid),
        'Balance': float(b.balance),
        'Status': b.status.value if b.status else '',
        'Due Date': _day(b.due_date),
        'Created At': b.created_at.isoformat() if b.created_at else '',
    } for b in query.order_by(FeeBalance.id.desc()).all()]


def export_fee_structures(session: Session, school_id: int, filters) -> list:
    query = session.query(FeeStructure).options(
        joinedload(FeeStructure.fee_type),
        joinedload(FeeStructure.school_class),
        joinedload(FeeStructure.academic_year),
    ).filter(FeeStructure.school_id == school_id)
    if filters.class_id:
        query = query.filter(FeeStructure.class_id == filters.class_id)
    if filters.academic_year_id:
        query = query.filter(FeeStructure.academic_year_id == filters.academic_year_id)

    return [{
        'Fee Type': f.fee_type.name if f.fee_type else '',
        'Class': f.school_class.name if f.school_class else '',
        'Academic Year': f.academic_year.year if f.academic_year else '',
        'Amount': float(f.amount),
        'Term 1 Amount': float(f.term1_amount or 0),
        'Term 2 Amount': float(f.term2_amount or 0),
        'Term 3 Amount': float(f.term3_amount or 0),
        'Is Active': 'Yes' if f.is_active else 'No',
        'Created At': f.created_at.isoformat() if f.created_at else '',
    } for f in query.order_by(FeeStructure.id.desc()).all()]


EXPORTERS = {
    'students': export_students,
    'payments': export_payments,
    'fee-balances': export_fee_balances,
    'fee-structures': export_fee_structures,
}

SECTION_KEYS = {
    'students': 'students',
    'payments': 'payments',
    'fee-balances': 'feeBalances',
    'fee-structures': 'feeStructures',
}


def collect_export(session: Session, school_id: int, export_type: str, filters):
    """List of flat records, or a dict of lists keyed by section for 'all'"""
    if export_type == 'all':
        return {SECTION_KEYS[name]: exporter(session, school_id, filters) for name, exporter in EXPORTERS.items()}
    return EXPORTERS[export_type](session, school_id, filters)


def rows_to_csv(rows: list) -> str:
    if not rows:
        return 'No data available'
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()), lineterminator='\n')
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue()


def export_to_csv(data) -> str:
    """CSV text; 'all' exports become one titled section per entity"""
    if isinstance(data, dict):
        sections = []
        for key, rows in data.items():
            sections.append(f"# {key}\n{rows_to_csv(rows)}")
        return '\n'.join(sections)
    return rows_to_csv(data)


def record_count(data) -> int:
    if isinstance(data, dict):
        return sum(len(rows) for rows in data.values())
    return len(data)
