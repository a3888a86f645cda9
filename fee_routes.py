"""
Fee Management Routes
Fee types, fee structures, fee balances and payment methods
"""

from flask import request, jsonify, g
from datetime import date
from sqlalchemy import func
from sqlalchemy.orm import joinedload
import logging

from db_single import get_session
from models import Student, SchoolClass, AcademicYear, Term
from fee_models import (
    FeeType, FeeStructure, FeeBalance, PaymentMethod, PaymentDetail, FeePayment,
    FeeFrequencyEnum
)
from schemas import (
    FeeTypeCreate, FeeTypeUpdate, FeeStructureCreate, FeeStructureUpdate,
    FeeStructureApply, FeeBalanceCreate, FeeBalanceUpdate, PaymentMethodCreate, PaymentMethodUpdate
)
from api_helpers import (
    ApiError, json_error, parse_body, query_int, query_bool,
    get_pagination, paginate, pagination_meta, handle_api_exception
)
from fee_helpers import refresh_balance, apply_fee_structure, summarize_balances

logger = logging.getLogger(__name__)


def _resolve_id(path_id, label):
    """Record id from the URL path, falling back to ?id="""
    record_id = path_id or query_int('id')
    if not record_id:
        raise ApiError(f'{label} ID is required')
    return record_id


def _owned(session, model, record_id, school_id, label):
    """Look up a tenant-scoped row by id, 400 when it belongs elsewhere or is missing"""
    record = session.query(model).filter_by(id=record_id, school_id=school_id).first()
    if not record:
        raise ApiError(f'{label} with ID {record_id} not found')
    return record


def _term_in_year(session, term_id, academic_year_id):
    term = session.query(Term).filter_by(id=term_id, academic_year_id=academic_year_id).first()
    if not term:
        raise ApiError(f'Term with ID {term_id} not found in this academic year')
    return term


def create_fee_routes(api_bp, require_api_auth):
    """Add fee management routes to the API blueprint"""

    # ===== FEE TYPES =====

    @api_bp.route('/fee-types', methods=['GET'])
    @require_api_auth
    def list_fee_types():
        """List fee types with structure/balance counts"""
        session = get_session()
        try:
            query = session.query(FeeType).filter_by(school_id=g.school_id)

            is_active = query_bool('isActive')
            if is_active is not None:
                query = query.filter(FeeType.is_active.is_(is_active))
            frequency = request.args.get('frequency')
            if frequency:
                try:
                    query = query.filter(FeeType.frequency == FeeFrequencyEnum(frequency.upper()))
                except ValueError:
                    raise ApiError(f"Invalid frequency '{frequency}'")

            fee_types = query.order_by(FeeType.name).all()
            return jsonify({'feeTypes': [f.to_dict(with_counts=True) for f in fee_types]})
        except Exception as e:
            return handle_api_exception(e, 'fetching fee types')
        finally:
            session.close()

    @api_bp.route('/fee-types', methods=['POST'])
    @require_api_auth
    def create_fee_type():
        """Create a fee type; a case-insensitive duplicate name is rejected by the unique index"""
        session = get_session()
        try:
            data = parse_body(FeeTypeCreate)
            fee_type = FeeType(school_id=g.school_id, name_key=data.name.lower(), **data.model_dump())
            session.add(fee_type)
            session.commit()

            logger.info(f"Fee type '{fee_type.name}' created for school {g.school_id}")
            return jsonify({'message': 'Fee type created successfully', 'feeType': fee_type.to_dict()}), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating fee type')
        finally:
            session.close()

    @api_bp.route('/fee-types', methods=['PUT'])
    @api_bp.route('/fee-types/<int:fee_type_id>', methods=['PUT'])
    @require_api_auth
    def update_fee_type(fee_type_id=None):
        session = get_session()
        try:
            fee_type_id = _resolve_id(fee_type_id, 'Fee type')
            fee_type = session.query(FeeType).filter_by(id=fee_type_id, school_id=g.school_id).first()
            if not fee_type:
                return json_error('Fee type not found', 404)

            changes = parse_body(FeeTypeUpdate).changes()
            for field, value in changes.items():
                if value is None and field != 'description':
                    continue
                setattr(fee_type, field, value)
            if changes.get('name'):
                fee_type.name_key = changes['name'].lower()

            session.commit()
            return jsonify({'message': 'Fee type updated successfully', 'feeType': fee_type.to_dict()})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating fee type')
        finally:
            session.close()

    @api_bp.route('/fee-types', methods=['DELETE'])
    @api_bp.route('/fee-types/<int:fee_type_id>', methods=['DELETE'])
    @require_api_auth
    def delete_fee_type(fee_type_id=None):
        """Delete a fee type (and its structures) if no balance or payment uses it"""
        session = get_session()
        try:
            fee_type_id = _resolve_id(fee_type_id, 'Fee type')
            fee_type = session.query(FeeType).filter_by(id=fee_type_id, school_id=g.school_id).first()
            if not fee_type:
                return json_error('Fee type not found', 404)

            balance_count = session.query(func.count(FeeBalance.id)).filter_by(fee_type_id=fee_type.id).scalar()
            detail_count = session.query(func.count(PaymentDetail.id)).filter_by(fee_type_id=fee_type.id).scalar()
            if balance_count or detail_count:
                raise ApiError(
                    'Cannot delete fee type: it is used by fee balances or payments. Deactivate it instead.',
                    details={'feeBalances': balance_count, 'paymentDetails': detail_count}
                )

            session.delete(fee_type)
            session.commit()
            logger.info(f"Fee type '{fee_type.name}' deleted from school {g.school_id}")
            return jsonify({'message': 'Fee type deleted successfully'})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'deleting fee type')
        finally:
            session.close()

    # ===== FEE STRUCTURES =====

    @api_bp.route('/fee-structures', methods=['GET'])
    @require_api_auth
    def list_fee_structures():
        session = get_session()
        try:
            query = session.query(FeeStructure).options(
                joinedload(FeeStructure.academic_year),
                joinedload(FeeStructure.school_class),
                joinedload(FeeStructure.fee_type),
            ).filter(FeeStructure.school_id == g.school_id)

            for arg, column in (('academicYearId', FeeStructure.academic_year_id),
                                ('classId', FeeStructure.class_id),
                                ('feeTypeId', FeeStructure.fee_type_id)):
                value = query_int(arg)
                if value:
                    query = query.filter(column == value)
            is_active = query_bool('isActive')
            if is_active is not None:
                query = query.filter(FeeStructure.is_active.is_(is_active))

            structures = query.order_by(FeeStructure.academic_year_id, FeeStructure.class_id, FeeStructure.id).all()
            return jsonify({'feeStructures': [s.to_dict() for s in structures]})
        except Exception as e:
            return handle_api_exception(e, 'fetching fee structures')
        finally:
            session.close()

    @api_bp.route('/fee-structures', methods=['POST'])
    @require_api_auth
    def create_fee_structure():
        """One structure per (academic year, class, fee type); duplicates hit the unique index"""
        session = get_session()
        try:
            data = parse_body(FeeStructureCreate)
            _owned(session, AcademicYear, data.academic_year_id, g.school_id, 'Academic year')
            _owned(session, SchoolClass, data.class_id, g.school_id, 'Class')
            _owned(session, FeeType, data.fee_type_id, g.school_id, 'Fee type')

            structure = FeeStructure(school_id=g.school_id, **data.model_dump())
            session.add(structure)
            session.commit()
            return jsonify({'message': 'Fee structure created successfully', 'feeStructure': structure.to_dict()}), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating fee structure')
        finally:
            session.close()

    @api_bp.route('/fee-structures', methods=['PUT'])
    @api_bp.route('/fee-structures/<int:structure_id>', methods=['PUT'])
    @require_api_auth
    def update_fee_structure(structure_id=None):
        """Update amounts; the structure is found by id or by its (year, class, fee type) key"""
        session = get_session()
        try:
            data = parse_body(FeeStructureUpdate)
            structure_id = structure_id or query_int('id')
            query = session.query(FeeStructure).filter(FeeStructure.school_id == g.school_id)
            if structure_id:
                structure = query.filter(FeeStructure.id == structure_id).first()
            elif data.academic_year_id and data.class_id and data.fee_type_id:
                structure = query.filter_by(
                    academic_year_id=data.academic_year_id,
                    class_id=data.class_id,
                    fee_type_id=data.fee_type_id,
                ).first()
            else:
                raise ApiError('Fee structure ID or academicYearId, classId and feeTypeId are required')

            if not structure:
                return json_error('Fee structure not found', 404)

            changes = data.changes()
            for field in ('amount', 'term1_amount', 'term2_amount', 'term3_amount', 'is_active'):
                if changes.get(field) is not None:
                    setattr(structure, field, changes[field])

            session.commit()
            return jsonify({'message': 'Fee structure updated successfully', 'feeStructure': structure.to_dict()})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating fee structure')
        finally:
            session.close()

    @api_bp.route('/fee-structures', methods=['DELETE'])
    @api_bp.route('/fee-structures/<int:structure_id>', methods=['DELETE'])
    @require_api_auth
    def delete_fee_structure(structure_id=None):
        session = get_session()
        try:
            structure_id = _resolve_id(structure_id, 'Fee structure')
            structure = session.query(FeeStructure).filter_by(id=structure_id, school_id=g.school_id).first()
            if not structure:
                return json_error('Fee structure not found', 404)

            session.delete(structure)
            session.commit()
            return jsonify({'message': 'Fee structure deleted successfully'})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'deleting fee structure')
        finally:
            session.close()

    @api_bp.route('/fee-structures/<int:structure_id>/apply', methods=['POST'])
    @require_api_auth
    def apply_structure(structure_id):
        """Create the missing fee balances for every active student of the structure's class"""
        session = get_session()
        try:
            structure = session.query(FeeStructure).filter_by(id=structure_id, school_id=g.school_id).first()
            if not structure:
                return json_error('Fee structure not found', 404)
            if not structure.is_active:
                raise ApiError('Cannot apply an inactive fee structure')

            data = parse_body(FeeStructureApply)
            term = None
            if data.term_id:
                term = _term_in_year(session, data.term_id, structure.academic_year_id)

            result = apply_fee_structure(session, structure, term=term, due_date=data.due_date)
            session.commit()

            logger.info(f"Applied fee structure {structure.id}: {result['created']} balances created")
            return jsonify({'message': f"Created {result['created']} fee balances", **result})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'applying fee structure')
        finally:
            session.close()

    # ===== FEE BALANCES =====

    @api_bp.route('/fee-balances', methods=['GET'])
    @require_api_auth
    def list_fee_balances():
        """Paginated balances with status filter and page statistics"""
        session = get_session()
        try:
            page, limit = get_pagination()
            query = session.query(FeeBalance).join(Student, FeeBalance.student_id == Student.id).join(
                FeeType, FeeBalance.fee_type_id == FeeType.id
            ).options(
                joinedload(FeeBalance.student).joinedload(Student.student_class),
                joinedload(FeeBalance.academic_year),
                joinedload(FeeBalance.term),
                joinedload(FeeBalance.fee_type),
            ).filter(FeeBalance.school_id == g.school_id)

            for arg, column in (('studentId', FeeBalance.student_id),
                                ('academicYearId', FeeBalance.academic_year_id),
                                ('termId', FeeBalance.term_id),
                                ('feeTypeId', FeeBalance.fee_type_id)):
                value = query_int(arg)
                if value:
                    query = query.filter(column == value)

            status = (request.args.get('status') or '').lower()
            if status == 'paid':
                query = query.filter(FeeBalance.balance <= 0)
            elif status == 'unpaid':
                query = query.filter(FeeBalance.balance > 0)
            elif status == 'partial':
                query = query.filter(FeeBalance.amount_paid > 0, FeeBalance.balance > 0)
            elif status == 'overdue':
                query = query.filter(FeeBalance.balance > 0, FeeBalance.due_date < date.today())
            elif status:
                raise ApiError(f"Invalid status '{status}'")

            query = query.order_by(Student.first_name, Student.last_name, FeeType.name, FeeBalance.id)
            balances, total = paginate(query, page, limit)

            statistics = summarize_balances(balances)
            return jsonify({
                'feeBalances': [b.to_dict() for b in balances],
                'pagination': pagination_meta(page, limit, total),
                'statistics': {
                    'totalCharged': statistics['totalCharged'],
                    'totalPaid': statistics['totalPaid'],
                    'totalOutstanding': statistics['totalBalance'],
                    'totalRecords': total,
                },
            })
        except Exception as e:
            return handle_api_exception(e, 'fetching fee balances')
        finally:
            session.close()

    @api_bp.route('/fee-balances', methods=['POST'])
    @require_api_auth
    def create_fee_balance():
        session = get_session()
        try:
            data = parse_body(FeeBalanceCreate)
            _owned(session, Student, data.student_id, g.school_id, 'Student')
            _owned(session, AcademicYear, data.academic_year_id, g.school_id, 'Academic year')
            _owned(session, FeeType, data.fee_type_id, g.school_id, 'Fee type')
            if data.term_id:
                _term_in_year(session, data.term_id, data.academic_year_id)

            # the unique constraint does not cover a NULL term_id
            existing = session.query(FeeBalance.id).filter_by(
                student_id=data.student_id,
                academic_year_id=data.academic_year_id,
                term_id=data.term_id,
                fee_type_id=data.fee_type_id,
            ).first()
            if existing:
                raise ApiError('Fee balance already exists for this student, academic year, term, and fee type combination')

            values = data.model_dump()
            if values['balance'] is None:
                values['balance'] = data.amount_charged - data.amount_paid
            fee_balance = FeeBalance(school_id=g.school_id, **values)
            refresh_balance(fee_balance)
            session.add(fee_balance)
            session.commit()

            return jsonify({'message': 'Fee balance created successfully', 'feeBalance': fee_balance.to_dict()}), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating fee balance')
        finally:
            session.close()

    @api_bp.route('/fee-balances', methods=['PUT'])
    @api_bp.route('/fee-balances/<int:balance_id>', methods=['PUT'])
    @require_api_auth
    def update_fee_balance(balance_id=None):
        """Adjust amounts; balance is recomputed unless given explicitly"""
        session = get_session()
        try:
            balance_id = _resolve_id(balance_id, 'Fee balance')
            fee_balance = session.query(FeeBalance).filter_by(id=balance_id, school_id=g.school_id).first()
            if not fee_balance:
                return json_error('Fee balance not found', 404)

            changes = parse_body(FeeBalanceUpdate).changes()
            if changes.get('amount_charged') is not None:
                fee_balance.amount_charged = changes['amount_charged']
            if changes.get('amount_paid') is not None:
                fee_balance.amount_paid = changes['amount_paid']
            if 'due_date' in changes:
                fee_balance.due_date = changes['due_date']

            if changes.get('balance') is not None:
                fee_balance.balance = changes['balance']
            elif 'amount_charged' in changes or 'amount_paid' in changes:
                fee_balance.balance = fee_balance.amount_charged - fee_balance.amount_paid

            refresh_balance(fee_balance)
            session.commit()
            return jsonify({'message': 'Fee balance updated successfully', 'feeBalance': fee_balance.to_dict()})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating fee balance')
        finally:
            session.close()

    @api_bp.route('/fee-balances', methods=['DELETE'])
    @api_bp.route('/fee-balances/<int:balance_id>', methods=['DELETE'])
    @require_api_auth
    def delete_fee_balance(balance_id=None):
        session = get_session()
        try:
            balance_id = _resolve_id(balance_id, 'Fee balance')
            fee_balance = session.query(FeeBalance).filter_by(id=balance_id, school_id=g.school_id).first()
            if not fee_balance:
                return json_error('Fee balance not found', 404)

            session.delete(fee_balance)
            session.commit()
            return jsonify({'message': 'Fee balance deleted successfully'})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'deleting fee balance')
        finally:
            session.close()

    # ===== PAYMENT METHODS =====

    @api_bp.route('/payment-methods', methods=['GET'])
    @require_api_auth
    def list_payment_methods():
        session = get_session()
        try:
            query = session.query(PaymentMethod).filter_by(school_id=g.school_id)
            if query_bool('includeInactive') is not True:
                query = query.filter(PaymentMethod.is_active.is_(True))
            methods = query.order_by(PaymentMethod.name).all()
            return jsonify({'paymentMethods': [m.to_dict() for m in methods]})
        except Exception as e:
            return handle_api_exception(e, 'fetching payment methods')
        finally:
            session.close()

    @api_bp.route('/payment-methods', methods=['POST'])
    @require_api_auth
    def create_payment_method():
        session = get_session()
        try:
            data = parse_body(PaymentMethodCreate)
            method = PaymentMethod(school_id=g.school_id, name_key=data.name.lower(), **data.model_dump())
            session.add(method)
            session.commit()
            return jsonify(method.to_dict()), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating payment method')
        finally:
            session.close()

    @api_bp.route('/payment-methods/<int:method_id>', methods=['PUT'])
    @require_api_auth
    def update_payment_method(method_id):
        session = get_session()
        try:
            method = session.query(PaymentMethod).filter_by(id=method_id, school_id=g.school_id).first()
            if not method:
                return json_error('Payment method not found', 404)

            changes = parse_body(PaymentMethodUpdate).changes()
            for field, value in changes.items():
                if value is None and field != 'description':
                    continue
                setattr(method, field, value)
            if changes.get('name'):
                method.name_key = changes['name'].lower()

            session.commit()
            return jsonify(method.to_dict())
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'updating payment method')
        finally:
            session.close()

    @api_bp.route('/payment-methods/<int:method_id>', methods=['DELETE'])
    @require_api_auth
    def delete_payment_method(method_id):
        """Deactivate a method that payments already reference, delete it otherwise"""
        session = get_session()
        try:
            method = session.query(PaymentMethod).filter_by(id=method_id, school_id=g.school_id).first()
            if not method:
                return json_error('Payment method not found', 404)

            in_use = session.query(FeePayment.id).filter_by(payment_method_id=method.id).first()
            if in_use:
                method.is_active = False
                session.commit()
                return jsonify({'message': 'Payment method is in use and was deactivated', 'paymentMethod': method.to_dict()})

            session.delete(method)
            session.commit()
            return jsonify({'message': 'Payment method deleted successfully'})
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'deleting payment method')
        finally:
            session.close()
