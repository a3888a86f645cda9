"""
Report, Dashboard and Settings Routes
"""

from flask import jsonify, g
import json
import logging

from db_single import get_session
from models import School
from schemas import ReportQuery, SchoolProfileUpdate
from api_helpers import ApiError, parse_body, parse_query, handle_api_exception, school_settings
from report_helpers import generate_report, REPORT_TYPES
from fee_helpers import get_dashboard_stats

logger = logging.getLogger(__name__)


def create_report_routes(api_bp, require_api_auth):
    """Add reporting, dashboard and school settings routes to the API blueprint"""

    @api_bp.route('/reports', methods=['GET'])
    @require_api_auth
    def reports():
        """financial | student | payment | balance report for the current school"""
        session = get_session()
        try:
            params = parse_query(ReportQuery)
            if params.type not in REPORT_TYPES:
                raise ApiError('Invalid report type', details={'allowed': list(REPORT_TYPES)})

            filters = params.model_dump(exclude={'type'}, exclude_none=True)
            return jsonify(generate_report(session, g.school_id, params.type, filters))
        except Exception as e:
            return handle_api_exception(e, 'generating report')
        finally:
            session.close()

    @api_bp.route('/dashboard/stats', methods=['GET'])
    @require_api_auth
    def dashboard_stats():
        session = get_session()
        try:
            stats = get_dashboard_stats(session, g.school_id)
            stats['school'] = g.current_school.to_dict()
            stats['settings'] = school_settings(g.current_school).model_dump(by_alias=True)
            return jsonify(stats)
        except Exception as e:
            return handle_api_exception(e, 'loading dashboard stats')
        finally:
            session.close()

    @api_bp.route('/settings', methods=['GET'])
    @require_api_auth
    def get_settings():
        return jsonify({
            'school': g.current_school.to_dict(),
            'settings': school_settings(g.current_school).model_dump(by_alias=True),
        })

    @api_bp.route('/settings', methods=['PUT'])
    @require_api_auth
    def update_settings():
        """Update the school profile and its typed settings"""
        session = get_session()
        try:
            school = session.get(School, g.school_id)
            data = parse_body(SchoolProfileUpdate)
            changes = data.changes()

            settings = changes.pop('settings', None)
            for field, value in changes.items():
                if field == 'name' and not value:
                    continue
                setattr(school, field, value)

            if settings is not None:
                merged = school_settings(school).model_dump()
                merged.update(data.settings.changes())
                school.settings = json.dumps(merged)

            session.commit()
            logger.info(f"Settings updated for school {school.slug}")
            return jsonify({
                'message': 'Settings updated successfully',
                'school': school.to_dict(),
                'settings': school_settings(school).model_dump(by_alias=True),
            })
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating settings')
        finally:
            session.close()
