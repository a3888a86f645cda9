"""
Student Routes
Student records plus the academic setup they hang off: classes, academic years and terms
"""

from flask import request, jsonify, g
from flask_login import current_user
from datetime import date
from sqlalchemy import or_, func
from sqlalchemy.orm import joinedload, selectinload
import logging

from db_single import get_session
from models import Student, SchoolClass, AcademicYear, Term, StudentStatusEnum
from fee_models import FeePayment, FeeBalance
from schemas import (
    StudentCreate, StudentUpdate, ClassCreate, ClassUpdate,
    AcademicYearCreate, AcademicYearUpdate, TermCreate
)
from api_helpers import (
    ApiError, json_error, parse_body, query_int, get_pagination, paginate,
    pagination_meta, handle_api_exception
)
from fee_helpers import get_student_fee_statistics, build_student_statement

logger = logging.getLogger(__name__)


def generate_admission_number(session, school_id):
    """Next free admission number like ADM-2025-0001"""
    prefix = f"ADM-{date.today().year}-"
    count = session.query(func.count(Student.id)).filter(
        Student.school_id == school_id,
        Student.admission_number.like(f"{prefix}%")
    ).scalar() or 0

    number = f"{prefix}{count + 1:04d}"
    while session.query(Student.id).filter_by(school_id=school_id, admission_number=number).first():
        count += 1
        number = f"{prefix}{count + 1:04d}"
    return number


def _get_class(session, school_id, class_id):
    school_class = session.query(SchoolClass).filter_by(id=class_id, school_id=school_id).first()
    if not school_class:
        raise ApiError(f'Class with ID {class_id} not found')
    return school_class


def _get_academic_year(session, school_id, academic_year_id):
    year = session.query(AcademicYear).filter_by(id=academic_year_id, school_id=school_id).first()
    if not year:
        raise ApiError(f'Academic year with ID {academic_year_id} not found')
    return year


def _check_student_unique(session, school_id, admission_number=None, email=None, exclude_id=None):
    """Duplicate admission number or email inside the school -> 400"""
    if admission_number:
        query = session.query(Student.id).filter_by(school_id=school_id, admission_number=admission_number)
        if exclude_id:
            query = query.filter(Student.id != exclude_id)
        if query.first():
            raise ApiError('Admission number already exists')
    if email:
        query = session.query(Student.id).filter(
            Student.school_id == school_id, func.lower(Student.email) == email.lower()
        )
        if exclude_id:
            query = query.filter(Student.id != exclude_id)
        if query.first():
            raise ApiError('A student with this email already exists')


def _set_current_year(session, school_id, year):
    """Only one current academic year per school; cleared in the same transaction"""
    session.query(AcademicYear).filter(
        AcademicYear.school_id == school_id,
        AcademicYear.id != year.id
    ).update({AcademicYear.is_current: False}, synchronize_session=False)
    year.is_current = True


def create_student_routes(api_bp, require_api_auth):
    """Register student and academic setup routes on the API blueprint"""

    # ===== STUDENTS =====

    @api_bp.route('/students', methods=['GET'])
    @require_api_auth
    def list_students():
        """List students with search, filters and pagination"""
        session = get_session()
        try:
            page, limit = get_pagination()
            search = request.args.get('search', '').strip()
            status = request.args.get('status', '').strip()
            class_id = query_int('classId')
            academic_year_id = query_int('academicYearId')

            query = session.query(Student).options(
                joinedload(Student.student_class), joinedload(Student.academic_year)
            ).filter(Student.school_id == g.school_id)

            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    Student.first_name.ilike(pattern),
                    Student.last_name.ilike(pattern),
                    Student.admission_number.ilike(pattern),
                    Student.parent_name.ilike(pattern),
                ))
            if status and status.lower() != 'all':
                try:
                    query = query.filter(Student.status == StudentStatusEnum(status.upper()))
                except ValueError:
                    raise ApiError(f"Invalid status '{status}'")
            if class_id:
                query = query.filter(Student.class_id == class_id)
            if academic_year_id:
                query = query.filter(Student.academic_year_id == academic_year_id)

            query = query.order_by(Student.created_at.desc(), Student.id.desc())
            students, total = paginate(query, page, limit)

            return jsonify({
                'students': [s.to_dict() for s in students],
                'pagination': pagination_meta(page, limit, total),
            })
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'fetching students')
        finally:
            session.close()

    @api_bp.route('/students', methods=['POST'])
    @require_api_auth
    def create_student():
        """Create a student in the current school"""
        session = get_session()
        try:
            data = parse_body(StudentCreate)
            _get_class(session, g.school_id, data.class_id)

            if data.academic_year_id:
                _get_academic_year(session, g.school_id, data.academic_year_id)
                academic_year_id = data.academic_year_id
            else:
                current_year = session.query(AcademicYear).filter_by(school_id=g.school_id, is_current=True).first()
                if not current_year:
                    raise ApiError('academicYearId is required when the school has no current academic year')
                academic_year_id = current_year.id

            _check_student_unique(session, g.school_id, data.admission_number, data.email)

            values = data.model_dump(exclude={'admission_number', 'academic_year_id'}, exclude_none=True)
            student = Student(
                school_id=g.school_id,
                admission_number=data.admission_number or generate_admission_number(session, g.school_id),
                academic_year_id=academic_year_id,
                **values
            )
            session.add(student)
            session.commit()

            logger.info(f"Student {student.admission_number} created by {current_user.username}")
            return jsonify(student.to_dict()), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating student')
        finally:
            session.close()

    @api_bp.route('/students/<int:student_id>', methods=['GET'])
    @require_api_auth
    def get_student(student_id):
        """Student with balances, payments and fee statistics"""
        session = get_session()
        try:
            student = session.query(Student).options(
                joinedload(Student.student_class),
                joinedload(Student.academic_year),
                selectinload(Student.fee_balances).joinedload(FeeBalance.fee_type),
                selectinload(Student.fee_payments).selectinload(FeePayment.payment_details),
            ).filter_by(id=student_id, school_id=g.school_id).first()

            if not student:
                return json_error('Student not found', 404)

            data = student.to_dict()
            data['feeBalances'] = [b.to_dict(include_student=False) for b in student.fee_balances]
            data['feePayments'] = [p.to_dict(include_student=False) for p in student.fee_payments]
            data['feeStatistics'] = get_student_fee_statistics(student)
            return jsonify(data)
        except Exception as e:
            return handle_api_exception(e, 'fetching student')
        finally:
            session.close()

    @api_bp.route('/students/<int:student_id>', methods=['PUT'])
    @require_api_auth
    def update_student(student_id):
        session = get_session()
        try:
            student = session.query(Student).filter_by(id=student_id, school_id=g.school_id).first()
            if not student:
                return json_error('Student not found', 404)

            changes = parse_body(StudentUpdate).changes()
            if changes.get('class_id'):
                _get_class(session, g.school_id, changes['class_id'])
            if changes.get('academic_year_id'):
                _get_academic_year(session, g.school_id, changes['academic_year_id'])
            _check_student_unique(session, g.school_id, changes.get('admission_number'),
                                  changes.get('email'), exclude_id=student.id)

            for field, value in changes.items():
                if field in ('first_name', 'last_name', 'class_id', 'academic_year_id',
                             'admission_number', 'status') and value is None:
                    continue
                setattr(student, field, value)

            session.commit()
            return jsonify(student.to_dict())
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating student')
        finally:
            session.close()

    @api_bp.route('/students/<int:student_id>', methods=['DELETE'])
    @require_api_auth
    def delete_student(student_id):
        """Soft delete (INACTIVE) when payments exist, hard delete otherwise"""
        session = get_session()
        try:
            student = session.query(Student).filter_by(id=student_id, school_id=g.school_id).first()
            if not student:
                return json_error('Student not found', 404)

            payment_count = session.query(func.count(FeePayment.id)).filter_by(student_id=student.id).scalar()
            if payment_count:
                student.status = StudentStatusEnum.INACTIVE
                session.commit()
                logger.info(f"Student {student.admission_number} deactivated ({payment_count} payments on record)")
                return jsonify({
                    'message': 'Student has payment records and was marked inactive',
                    'softDeleted': True,
                    'student': student.to_dict(),
                })

            session.delete(student)
            session.commit()
            logger.info(f"Student {student.admission_number} deleted")
            return jsonify({'message': 'Student deleted successfully', 'softDeleted': False})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'deleting student')
        finally:
            session.close()

    @api_bp.route('/students/<int:student_id>/statement', methods=['GET'])
    @require_api_auth
    def student_statement(student_id):
        """Balance statement: per-fee-type lines plus payment history"""
        session = get_session()
        try:
            student = session.query(Student).filter_by(id=student_id, school_id=g.school_id).first()
            if not student:
                return json_error('Student not found', 404)
            return jsonify(build_student_statement(student))
        except Exception as e:
            return handle_api_exception(e, 'building student statement')
        finally:
            session.close()

    # ===== CLASSES =====

    @api_bp.route('/classes', methods=['GET'])
    @require_api_auth
    def list_classes():
        session = get_session()
        try:
            query = session.query(SchoolClass).filter_by(school_id=g.school_id)
            if request.args.get('includeInactive', '').lower() != 'true':
                query = query.filter(SchoolClass.is_active.is_(True))
            classes = query.order_by(SchoolClass.level, SchoolClass.name).all()

            counts = dict(session.query(Student.class_id, func.count(Student.id)).filter(
                Student.school_id == g.school_id,
                Student.status == StudentStatusEnum.ACTIVE
            ).group_by(Student.class_id).all())

            result = []
            for c in classes:
                data = c.to_dict()
                data['studentCount'] = counts.get(c.id, 0)
                result.append(data)
            return jsonify({'classes': result})
        except Exception as e:
            return handle_api_exception(e, 'fetching classes')
        finally:
            session.close()

    @api_bp.route('/classes', methods=['POST'])
    @require_api_auth
    def create_class():
        session = get_session()
        try:
            data = parse_body(ClassCreate)
            if data.next_class_id:
                _get_class(session, g.school_id, data.next_class_id)

            school_class = SchoolClass(school_id=g.school_id, **data.model_dump())
            session.add(school_class)
            session.commit()
            return jsonify(school_class.to_dict()), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating class')
        finally:
            session.close()

    @api_bp.route('/classes/<int:class_id>', methods=['PUT'])
    @require_api_auth
    def update_class(class_id):
        session = get_session()
        try:
            school_class = session.query(SchoolClass).filter_by(id=class_id, school_id=g.school_id).first()
            if not school_class:
                return json_error('Class not found', 404)

            changes = parse_body(ClassUpdate).changes()
            if changes.get('next_class_id'):
                if changes['next_class_id'] == school_class.id:
                    raise ApiError('A class cannot promote into itself')
                _get_class(session, g.school_id, changes['next_class_id'])

            for field, value in changes.items():
                if value is None and field != 'next_class_id':
                    continue
                setattr(school_class, field, value)
            session.commit()
            return jsonify(school_class.to_dict())
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating class')
        finally:
            session.close()

    # ===== ACADEMIC YEARS & TERMS =====

    @api_bp.route('/academic-years', methods=['GET'])
    @require_api_auth
    def list_academic_years():
        session = get_session()
        try:
            years = session.query(AcademicYear).options(selectinload(AcademicYear.terms)).filter_by(
                school_id=g.school_id
            ).order_by(AcademicYear.start_date.desc(), AcademicYear.year.desc()).all()
            return jsonify({'academicYears': [y.to_dict(include_terms=True) for y in years]})
        except Exception as e:
            return handle_api_exception(e, 'fetching academic years')
        finally:
            session.close()

    @api_bp.route('/academic-years', methods=['POST'])
    @require_api_auth
    def create_academic_year():
        session = get_session()
        try:
            data = parse_body(AcademicYearCreate)
            if session.query(AcademicYear.id).filter_by(school_id=g.school_id, year=data.year).first():
                raise ApiError(f"Academic year '{data.year}' already exists")

            year = AcademicYear(school_id=g.school_id, **data.model_dump(exclude={'is_current'}))
            session.add(year)
            session.flush()
            if data.is_current:
                _set_current_year(session, g.school_id, year)
            session.commit()
            return jsonify(year.to_dict(include_terms=True)), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating academic year')
        finally:
            session.close()

    @api_bp.route('/academic-years/<int:year_id>', methods=['PUT'])
    @require_api_auth
    def update_academic_year(year_id):
        session = get_session()
        try:
            year = session.query(AcademicYear).filter_by(id=year_id, school_id=g.school_id).first()
            if not year:
                return json_error('Academic year not found', 404)

            changes = parse_body(AcademicYearUpdate).changes()
            is_current = changes.pop('is_current', None)
            for field, value in changes.items():
                if value is None and field == 'year':
                    continue
                setattr(year, field, value)

            if is_current:
                _set_current_year(session, g.school_id, year)
            elif is_current is False:
                year.is_current = False

            if year.start_date and year.end_date and year.end_date < year.start_date:
                raise ApiError('endDate must be on or after startDate')

            session.commit()
            return jsonify(year.to_dict(include_terms=True))
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating academic year')
        finally:
            session.close()

    @api_bp.route('/academic-years/<int:year_id>/terms', methods=['GET'])
    @require_api_auth
    def list_terms(year_id):
        session = get_session()
        try:
            year = session.query(AcademicYear).filter_by(id=year_id, school_id=g.school_id).first()
            if not year:
                return json_error('Academic year not found', 404)
            return jsonify({'terms': [t.to_dict() for t in year.terms]})
        except Exception as e:
            return handle_api_exception(e, 'fetching terms')
        finally:
            session.close()

    @api_bp.route('/academic-years/<int:year_id>/terms', methods=['POST'])
    @require_api_auth
    def create_term(year_id):
        session = get_session()
        try:
            year = session.query(AcademicYear).filter_by(id=year_id, school_id=g.school_id).first()
            if not year:
                return json_error('Academic year not found', 404)

            data = parse_body(TermCreate)
            if session.query(Term.id).filter_by(academic_year_id=year.id, name=data.name).first():
                raise ApiError(f"Term '{data.name}' already exists in {year.year}")

            term = Term(academic_year_id=year.id, **data.model_dump())
            if term.is_current:
                session.query(Term).filter(Term.academic_year_id == year.id).update(
                    {Term.is_current: False}, synchronize_session=False
                )
            session.add(term)
            session.commit()
            return jsonify(term.to_dict()), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating term')
        finally:
            session.close()
