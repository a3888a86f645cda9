"""
Superadmin Routes for Single Database Multi-Tenant System
Platform statistics and school (tenant) management for the superadmin console
"""

from flask import Blueprint, jsonify
from flask_login import current_user
from functools import wraps
from sqlalchemy import func
import logging

from db_single import get_session, create_school
from models import User, School, Student, StudentStatusEnum
from fee_models import FeePayment, FeeBalance
from schemas import SchoolCreate, SchoolUserCreate
from api_helpers import json_error, parse_body, handle_api_exception, ApiError
from report_helpers import format_rate

logger = logging.getLogger(__name__)


def create_superadmin_blueprint():
    """Create the /api/superadmin blueprint"""

    superadmin_bp = Blueprint('superadmin', __name__, url_prefix='/api/superadmin')

    def require_superadmin(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return json_error('Authentication required', 401)
            if not current_user.is_superadmin:
                return json_error('Superadmin access required', 403)
            return f(*args, **kwargs)
        return decorated_function

    @superadmin_bp.route('/stats', methods=['GET'])
    @require_superadmin
    def platform_stats():
        """Platform-wide metrics across every school"""
        session = get_session()
        try:
            total_schools = session.query(func.count(School.id)).scalar() or 0
            active_schools = session.query(func.count(School.id)).filter(School.is_active.is_(True)).scalar() or 0
            total_students = session.query(func.count(Student.id)).filter(
                Student.status == StudentStatusEnum.ACTIVE
            ).scalar() or 0
            total_users = session.query(func.count(User.id)).filter(User.school_id.isnot(None)).scalar() or 0
            total_payments = session.query(func.count(FeePayment.id)).scalar() or 0
            total_revenue = session.query(func.coalesce(func.sum(FeePayment.amount_paid), 0)).scalar() or 0

            # Average of per-school collection rates, over schools that charged anything
            collected = dict(session.query(FeePayment.school_id, func.sum(FeePayment.amount_paid)).group_by(
                FeePayment.school_id).all())
            charged = dict(session.query(FeeBalance.school_id, func.sum(FeeBalance.amount_charged)).group_by(
                FeeBalance.school_id).all())
            rates = [float(format_rate(collected.get(school_id) or 0, amount))
                     for school_id, amount in charged.items() if amount and amount > 0]
            average_rate = sum(rates) / len(rates) if rates else 0

            return jsonify({
                'totalSchools': total_schools,
                'activeSchools': active_schools,
                'inactiveSchools': total_schools - active_schools,
                'totalStudents': total_students,
                'totalUsers': total_users,
                'totalPayments': total_payments,
                'totalRevenue': float(total_revenue),
                'averageCollectionRate': f"{average_rate:.2f}" if rates else '0',
            })
        except Exception as e:
            return handle_api_exception(e, 'loading platform stats')
        finally:
            session.close()

    @superadmin_bp.route('/schools', methods=['GET'])
    @require_superadmin
    def list_schools():
        """All schools with student and user counts"""
        session = get_session()
        try:
            schools = session.query(School).order_by(School.created_at.desc(), School.id.desc()).all()
            student_counts = dict(session.query(Student.school_id, func.count(Student.id)).group_by(Student.school_id).all())
            user_counts = dict(session.query(User.school_id, func.count(User.id)).filter(
                User.school_id.isnot(None)).group_by(User.school_id).all())
            revenue = dict(session.query(FeePayment.school_id, func.sum(FeePayment.amount_paid)).group_by(
                FeePayment.school_id).all())

            result = []
            for school in schools:
                data = school.to_dict()
                data['studentCount'] = student_counts.get(school.id, 0)
                data['userCount'] = user_counts.get(school.id, 0)
                data['totalRevenue'] = float(revenue.get(school.id) or 0)
                result.append(data)
            return jsonify({'schools': result})
        except Exception as e:
            return handle_api_exception(e, 'listing schools')
        finally:
            session.close()

    @superadmin_bp.route('/schools', methods=['POST'])
    @require_superadmin
    def add_school():
        """Create a school together with its first school admin"""
        session = get_session()
        try:
            data = parse_body(SchoolCreate)
            values = data.model_dump(exclude={'slug', 'name'})
            success, message = create_school(data.slug, data.name, **values)
            if not success:
                raise ApiError(message)

            school = session.query(School).filter_by(slug=data.slug).first()
            logger.info(f"Superadmin {current_user.username} created school {data.slug}")
            return jsonify({'message': message, 'school': school.to_dict()}), 201
        except Exception as e:
            return handle_api_exception(e, 'creating school')
        finally:
            session.close()

    @superadmin_bp.route('/schools/<int:school_id>/toggle-status', methods=['POST'])
    @require_superadmin
    def toggle_school_status(school_id):
        """Activate or deactivate a school; inactive schools cannot log in"""
        session = get_session()
        try:
            school = session.get(School, school_id)
            if not school:
                return json_error('School not found', 404)

            school.is_active = not school.is_active
            session.commit()

            status = "activated" if school.is_active else "deactivated"
            logger.info(f"School {school.slug} {status} by {current_user.username}")
            return jsonify({'message': f'School {status} successfully', 'school': school.to_dict()})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'toggling school status')
        finally:
            session.close()

    @superadmin_bp.route('/schools/<int:school_id>/users', methods=['POST'])
    @require_superadmin
    def add_school_user(school_id):
        session = get_session()
        try:
            school = session.get(School, school_id)
            if not school:
                return json_error('School not found', 404)

            data = parse_body(SchoolUserCreate)
            if session.query(User.id).filter_by(username=data.username).first():
                raise ApiError(f"Username '{data.username}' already exists")

            user = User(
                school_id=school.id,
                username=data.username,
                email=data.email,
                role=data.role,
                first_name=data.first_name,
                last_name=data.last_name,
                is_active=True,
            )
            user.set_password(data.password)
            session.add(user)
            session.commit()
            return jsonify({'message': 'User created successfully', 'user': user.to_dict()}), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating school user')
        finally:
            session.close()

    @superadmin_bp.route('/users', methods=['GET'])
    @require_superadmin
    def list_users():
        """Every user on the platform with their school"""
        session = get_session()
        try:
            users = session.query(User).order_by(User.school_id, User.username).all()
            result = []
            for user in users:
                data = user.to_dict()
                data['school'] = {'id': user.school.id, 'name': user.school.name, 'slug': user.school.slug} if user.school else None
                result.append(data)
            return jsonify({'users': result})
        except Exception as e:
            return handle_api_exception(e, 'listing users')
        finally:
            session.close()

    return superadmin_bp
