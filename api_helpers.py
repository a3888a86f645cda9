"""
Shared helpers for the JSON API handlers: error bodies, request parsing,
pagination and per-school settings
"""

import json
import logging
from datetime import date

from flask import jsonify, request, current_app
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from schemas import SchoolSettings, parse_flexible_date

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised inside a handler to return a JSON error with a status code"""

    def __init__(self, message, status=400, details=None, **extra):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details
        self.extra = extra

    def to_response(self):
        return json_error(self.message, self.status, self.details, **self.extra)


def json_error(message, status=400, details=None, **extra):
    body = {'error': message}
    if details is not None:
        body['details'] = details
    body.update(extra)
    return jsonify(body), status


def validation_details(error: ValidationError):
    """Field-level error list without pydantic's documentation URLs"""
    return json.loads(error.json(include_url=False))


def parse_body(schema):
    """Validate the JSON request body against a pydantic schema (raises ValidationError)"""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    return schema.model_validate(payload)


def parse_query(schema):
    return schema.model_validate(request.args.to_dict())


def query_int(name, default=None):
    value = request.args.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ApiError(f'{name} must be an integer')


def query_bool(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    return value.lower() in ('1', 'true', 'yes', 'on')


def query_date(name) -> date:
    value = request.args.get(name)
    if not value:
        return None
    try:
        return parse_flexible_date(value)
    except ValueError:
        raise ApiError(f'{name} must be a valid date')


def get_pagination():
    """Return (page, limit) from the query string, clamped to the configured bounds"""
    default_limit = current_app.config.get('DEFAULT_PAGE_SIZE', 10)
    max_limit = current_app.config.get('MAX_PAGE_SIZE', 100)
    try:
        page = max(int(request.args.get('page', 1)), 1)
    except ValueError:
        page = 1
    try:
        limit = int(request.args.get('limit', default_limit))
    except ValueError:
        limit = default_limit
    limit = min(max(limit, 1), max_limit)
    return page, limit


def paginate(query, page, limit):
    """Apply offset/limit to an ordered query; returns (rows, total)"""
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def pagination_meta(page, limit, total):
    pages = (total + limit - 1) // limit if limit else 0
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': pages,
        'totalPages': pages,
    }


def school_settings(school) -> SchoolSettings:
    """Typed settings for a school, defaults filled in for anything not stored"""
    if school is None:
        return SchoolSettings()
    try:
        return SchoolSettings.model_validate(school.settings_dict)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid settings for school {school.id}: {e.error_count()} errors")
        return SchoolSettings()


def handle_api_exception(e, action):
    """Map an exception raised inside a handler to its JSON error response"""
    if isinstance(e, ApiError):
        return e.to_response()
    if isinstance(e, ValidationError):
        return json_error('Validation error', 400, validation_details(e))
    if isinstance(e, IntegrityError):
        logger.warning(f"Conflict while {action}: {e.orig}")
        return json_error('A record with the same unique fields already exists', 409)
    if isinstance(e, HTTPException):
        return json_error(e.description, e.code)
    logger.error(f"Error {action}: {e}")
    return json_error('Internal server error', 500)
