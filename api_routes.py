"""
JSON API blueprint for school users
Authentication, tenant scoping and registration of the per-area route modules
"""

from flask import Blueprint, request, jsonify, g
from flask_login import current_user, login_user, logout_user
from functools import wraps
from datetime import datetime
import logging

from db_single import get_session
from models import School, User
from schemas import LoginRequest
from api_helpers import json_error, parse_body, handle_api_exception

logger = logging.getLogger(__name__)


def _requested_school_id():
    """School a superadmin is acting on: ?schoolId=, body schoolId or body filters.schoolId"""
    school_id = request.args.get('schoolId')
    if not school_id and request.is_json:
        body = request.get_json(silent=True) or {}
        if isinstance(body, dict):
            school_id = body.get('schoolId') or (body.get('filters') or {}).get('schoolId')
    if not school_id and request.form:
        school_id = request.form.get('schoolId')
    try:
        return int(school_id) if school_id else None
    except (TypeError, ValueError):
        return None


def create_api_blueprint():
    """Create the /api blueprint with every school-scoped route attached"""
    api_bp = Blueprint('api', __name__, url_prefix='/api')

    def require_api_auth(f):
        """Decorator to require a logged-in user and resolve the school being acted on"""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return json_error('Authentication required', 401)

            if current_user.is_superadmin:
                school_id = _requested_school_id()
                if not school_id:
                    return json_error('School ID is required', 400)
            else:
                school_id = current_user.school_id

            session = get_session()
            try:
                school = session.get(School, school_id)
            finally:
                session.close()

            if not school:
                return json_error('School not found', 404)
            if not school.is_active and not current_user.is_superadmin:
                return json_error('School account is inactive', 403)

            g.school_id = school.id
            g.current_school = school
            return f(*args, **kwargs)

        return decorated_function

    # ===== AUTH =====

    @api_bp.route('/auth/login', methods=['POST'])
    def login():
        """Session login for school users and the superadmin"""
        session = get_session()
        try:
            data = parse_body(LoginRequest)
            user = session.query(User).filter(
                (User.username == data.username) | (User.email == data.username)
            ).first()

            if not user or not user.check_password(data.password):
                logger.warning(f"Failed login attempt for '{data.username}'")
                return json_error('Invalid credentials', 401)
            if not user.is_active:
                return json_error('Account is disabled', 403)
            if user.school_id and not (user.school and user.school.is_active):
                return json_error('School account is inactive', 403)

            user.last_login = datetime.utcnow()
            session.commit()

            login_user(user)
            logger.info(f"User {user.username} logged in")
            return jsonify({
                'message': 'Login successful',
                'user': user.to_dict(),
                'school': user.school.to_dict() if user.school else None,
            })
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'logging in')
        finally:
            session.close()

    @api_bp.route('/auth/logout', methods=['POST'])
    def logout():
        if current_user.is_authenticated:
            logger.info(f"User {current_user.username} logged out")
        logout_user()
        return jsonify({'message': 'Logged out'})

    @api_bp.route('/auth/me')
    def me():
        if not current_user.is_authenticated:
            return json_error('Authentication required', 401)

        session = get_session()
        try:
            school = session.get(School, current_user.school_id) if current_user.school_id else None
            return jsonify({
                'user': current_user.to_dict(),
                'school': school.to_dict() if school else None,
            })
        finally:
            session.close()

    # ===== ROUTE MODULES =====
    from student_routes import create_student_routes
    from fee_routes import create_fee_routes
    from payment_routes import create_payment_routes
    from bulk_routes import create_bulk_routes
    from report_routes import create_report_routes

    create_student_routes(api_bp, require_api_auth)
    create_fee_routes(api_bp, require_api_auth)
    create_payment_routes(api_bp, require_api_auth)
    create_bulk_routes(api_bp, require_api_auth)
    create_report_routes(api_bp, require_api_auth)

    return api_bp
