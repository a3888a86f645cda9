"""
Bulk Operations Routes
Student import (JSON body or CSV upload), import template and data export
"""

from flask import request, jsonify, g, make_response
import logging

from db_single import get_session
from schemas import StudentImportRequest, ExportRequest
from api_helpers import ApiError, parse_body, handle_api_exception
from bulk_helpers import (
    read_student_csv, import_template_csv, import_students,
    collect_export, export_to_csv, record_count, EXPORT_FILENAMES
)

logger = logging.getLogger(__name__)


def create_bulk_routes(api_bp, require_api_auth):
    """Add bulk import/export routes to the API blueprint"""

    @api_bp.route('/bulk-operations/import-students', methods=['POST'])
    @require_api_auth
    def bulk_import_students():
        """Import students from {students: [...]} or a multipart CSV 'file'"""
        session = get_session()
        try:
            upload = request.files.get('file')
            if upload:
                if not upload.filename.lower().endswith('.csv'):
                    raise ApiError('Please upload a CSV file')
                rows = read_student_csv(upload)
                data = StudentImportRequest.model_validate({'students': rows})
            else:
                data = parse_body(StudentImportRequest)

            result = import_students(session, g.school_id, data.students)
            return jsonify(result)
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'importing students')
        finally:
            session.close()

    @api_bp.route('/bulk-operations/import-students', methods=['GET'])
    @require_api_auth
    def student_import_template():
        """CSV template with the expected headers and one example row"""
        resp = make_response(import_template_csv())
        resp.headers['Content-Type'] = 'text/csv; charset=utf-8'
        resp.headers['Content-Disposition'] = 'attachment; filename="student-import-template.csv"'
        return resp

    @api_bp.route('/bulk-operations/export-data', methods=['POST'])
    @require_api_auth
    def export_data():
        """Export students, payments, balances, structures (or all) as JSON or CSV"""
        session = get_session()
        try:
            params = parse_body(ExportRequest)
            data = collect_export(session, g.school_id, params.type, params.filters)
            filename = EXPORT_FILENAMES[params.type]
            logger.info(f"Exported {record_count(data)} {params.type} records for school {g.school_id}")

            if params.format == 'json':
                return jsonify({
                    'success': True,
                    'data': data,
                    'filename': f"{filename}.json",
                    'recordCount': record_count(data),
                })

            resp = make_response(export_to_csv(data))
            resp.headers['Content-Type'] = 'text/csv; charset=utf-8'
            resp.headers['Content-Disposition'] = f'attachment; filename="{filename}.csv"'
            return resp
        except Exception as e:
            return handle_api_exception(e, 'exporting data')
        finally:
            session.close()
