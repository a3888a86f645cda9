"""
Payment Routes
Payments with per-fee-type details, generated receipts (HTML / JSON / PDF) and photo receipts
"""

from flask import request, jsonify, g, current_app, send_file, make_response
from flask_login import current_user
from werkzeug.utils import secure_filename
from datetime import datetime
from sqlalchemy.orm import joinedload, selectinload
import logging
import os

from db_single import get_session
from models import Student, AcademicYear, Term
from fee_models import (
    FeeType, FeePayment, PaymentDetail, PaymentMethod, Receipt, PhotoReceipt, ReceiptFormatEnum
)
from schemas import PaymentCreate, ReceiptRequest, PhotoReceiptForm
from api_helpers import (
    ApiError, json_error, parse_body, query_int, get_pagination, paginate,
    pagination_meta, handle_api_exception, school_settings
)
from fee_helpers import (
    generate_receipt_number, apply_payment_to_balances, build_receipt_data,
    render_receipt_html, render_receipt_pdf
)

logger = logging.getLogger(__name__)


def _payment_query(session, school_id):
    return session.query(FeePayment).options(
        joinedload(FeePayment.student).joinedload(Student.student_class),
        joinedload(FeePayment.student).joinedload(Student.school),
        joinedload(FeePayment.academic_year),
        joinedload(FeePayment.term),
        joinedload(FeePayment.payment_method),
        selectinload(FeePayment.payment_details).joinedload(PaymentDetail.fee_type),
    ).filter(FeePayment.school_id == school_id)


def _get_payment(session, school_id, payment_id):
    payment = _payment_query(session, school_id).filter(FeePayment.id == payment_id).first()
    if not payment:
        raise ApiError('Payment not found', 404)
    return payment


def _receipts_dir(*parts):
    folder = os.path.join(current_app.config['UPLOAD_FOLDER'], 'receipts', *parts)
    os.makedirs(folder, exist_ok=True)
    return folder


def _receipt_response(receipt_data, receipt_format, download_name):
    """Render receipt data in the requested format"""
    if receipt_format == 'html':
        response = make_response(render_receipt_html(receipt_data))
        response.headers['Content-Type'] = 'text/html; charset=utf-8'
        return response
    if receipt_format == 'json':
        return jsonify({'receipt': receipt_data})
    return send_file(render_receipt_pdf(receipt_data), as_attachment=True,
                     download_name=f"{download_name}.pdf", mimetype='application/pdf')


def _allowed_receipt_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_RECEIPT_EXTENSIONS']


def create_payment_routes(api_bp, require_api_auth):
    """Add payment and receipt routes to the API blueprint"""

    # ===== PAYMENTS =====

    @api_bp.route('/payments', methods=['GET'])
    @require_api_auth
    def list_payments():
        session = get_session()
        try:
            page, limit = get_pagination()
            query = _payment_query(session, g.school_id)

            student_id = query_int('studentId')
            if student_id:
                query = query.filter(FeePayment.student_id == student_id)
            academic_year_id = query_int('academicYearId')
            if academic_year_id:
                query = query.filter(FeePayment.academic_year_id == academic_year_id)

            query = query.order_by(FeePayment.payment_date.desc(), FeePayment.id.desc())
            payments, total = paginate(query, page, limit)

            return jsonify({
                'payments': [p.to_dict() for p in payments],
                'pagination': pagination_meta(page, limit, total),
            })
        except Exception as e:
            return handle_api_exception(e, 'fetching payments')
        finally:
            session.close()

    @api_bp.route('/payments/<int:payment_id>', methods=['GET'])
    @require_api_auth
    def get_payment(payment_id):
        session = get_session()
        try:
            payment = _get_payment(session, g.school_id, payment_id)
            data = payment.to_dict()
            data['receipts'] = [r.to_dict() for r in payment.receipts]
            data['photoReceipts'] = [r.to_dict() for r in payment.photo_receipts]
            return jsonify(data)
        except Exception as e:
            return handle_api_exception(e, 'fetching payment')
        finally:
            session.close()

    @api_bp.route('/payments', methods=['POST'])
    @require_api_auth
    def create_payment():
        """Record a payment and upsert the student's fee balances in one transaction"""
        session = get_session()
        try:
            data = parse_body(PaymentCreate)

            student = session.query(Student).filter_by(id=data.student_id, school_id=g.school_id).first()
            if not student:
                return json_error('Student not found', 404)

            academic_year_id = data.academic_year_id or student.academic_year_id
            if not session.query(AcademicYear.id).filter_by(id=academic_year_id, school_id=g.school_id).first():
                raise ApiError(f'Academic year with ID {academic_year_id} not found')
            if data.term_id and not session.query(Term.id).filter_by(id=data.term_id, academic_year_id=academic_year_id).first():
                raise ApiError(f'Term with ID {data.term_id} not found in this academic year')
            if data.payment_method_id and not session.query(PaymentMethod.id).filter_by(
                    id=data.payment_method_id, school_id=g.school_id).first():
                raise ApiError(f'Payment method with ID {data.payment_method_id} not found')

            fee_type_ids = {d.fee_type_id for d in data.payment_details}
            known = {fid for (fid,) in session.query(FeeType.id).filter(
                FeeType.school_id == g.school_id, FeeType.id.in_(fee_type_ids))}
            missing = sorted(fee_type_ids - known)
            if missing:
                raise ApiError('Unknown fee types in paymentDetails', details={'feeTypeIds': missing})

            if data.receipt_number:
                if session.query(FeePayment.id).filter_by(school_id=g.school_id, receipt_number=data.receipt_number).first():
                    raise ApiError('Receipt number already exists')
                receipt_number = data.receipt_number
            else:
                receipt_number = generate_receipt_number(session, g.school_id, data.payment_date)

            payment = FeePayment(
                school_id=g.school_id,
                student_id=student.id,
                academic_year_id=academic_year_id,
                term_id=data.term_id,
                payment_method_id=data.payment_method_id,
                receipt_number=receipt_number,
                payment_date=data.payment_date,
                amount_paid=data.amount_paid,
                reference_number=data.reference_number,
                notes=data.notes,
                created_by=current_user.username,
                payment_details=[PaymentDetail(fee_type_id=d.fee_type_id, amount=d.amount) for d in data.payment_details],
            )
            session.add(payment)
            session.flush()

            apply_payment_to_balances(session, payment, student)
            session.commit()

            logger.info(f"Payment {receipt_number} of {data.amount_paid} recorded for student {student.admission_number}")
            return jsonify(_get_payment(session, g.school_id, payment.id).to_dict()), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'creating payment')
        finally:
            session.close()

    # ===== RECEIPTS =====

    @api_bp.route('/receipts', methods=['GET'])
    @require_api_auth
    def view_receipt():
        """Render a payment's receipt as html, json or pdf"""
        session = get_session()
        try:
            payment_id = query_int('paymentId')
            if not payment_id:
                raise ApiError('Payment ID is required')
            receipt_format = request.args.get('format', 'pdf').lower()
            if receipt_format not in ('html', 'json', 'pdf'):
                raise ApiError(f"Invalid receipt format '{receipt_format}'")

            payment = _get_payment(session, g.school_id, payment_id)
            receipt_data = build_receipt_data(payment, school_settings(g.current_school))
            return _receipt_response(receipt_data, receipt_format, f"receipt_{payment.receipt_number}")
        except Exception as e:
            return handle_api_exception(e, 'generating receipt')
        finally:
            session.close()

    @api_bp.route('/receipts', methods=['POST'])
    @require_api_auth
    def generate_receipt():
        """Record a generated receipt and store its rendered file"""
        session = get_session()
        try:
            data = parse_body(ReceiptRequest)
            payment = _get_payment(session, g.school_id, data.payment_id)
            receipt_data = build_receipt_data(payment, school_settings(g.current_school))

            file_path = None
            safe_number = secure_filename(payment.receipt_number)
            if data.format == 'pdf':
                file_path = os.path.join(_receipts_dir('generated'), f"{safe_number}.pdf")
                with open(file_path, 'wb') as fh:
                    fh.write(render_receipt_pdf(receipt_data).getvalue())
            elif data.format == 'html':
                file_path = os.path.join(_receipts_dir('generated'), f"{safe_number}.html")
                with open(file_path, 'w', encoding='utf-8') as fh:
                    fh.write(render_receipt_html(receipt_data))

            receipt = Receipt(
                payment_id=payment.id,
                receipt_number=payment.receipt_number,
                format=ReceiptFormatEnum(data.format),
                file_path=file_path,
            )
            session.add(receipt)
            session.commit()

            return jsonify({
                'message': 'Receipt generated successfully',
                'receipt': receipt.to_dict(),
                'receiptData': receipt_data,
            }), 201
        except Exception as e:
            session.rollback()
            return handle_api_exception(e, 'generating receipt')
        finally:
            session.close()

    @api_bp.route('/receipts/<int:receipt_id>/download', methods=['GET'])
    @require_api_auth
    def download_receipt(receipt_id):
        """Serve the stored receipt file, re-rendering it if the file is gone"""
        session = get_session()
        try:
            receipt = session.query(Receipt).join(FeePayment).filter(
                Receipt.id == receipt_id,
                FeePayment.school_id == g.school_id
            ).first()
            if not receipt:
                return json_error('Receipt not found', 404)

            receipt_format = receipt.format.value if receipt.format else 'pdf'
            if receipt.file_path and os.path.exists(receipt.file_path):
                mimetype = 'application/pdf' if receipt_format == 'pdf' else 'text/html'
                return send_file(receipt.file_path, as_attachment=receipt_format == 'pdf', mimetype=mimetype,
                                 download_name=os.path.basename(receipt.file_path))

            payment = _get_payment(session, g.school_id, receipt.payment_id)
            receipt_data = build_receipt_data(payment, school_settings(g.current_school))
            return _receipt_response(receipt_data, receipt_format, f"receipt_{receipt.receipt_number}")
        except Exception as e:
            return handle_api_exception(e, 'downloading receipt')
        finally:
            session.close()

    # ===== PHOTO RECEIPTS =====

    @api_bp.route('/receipts/photo', methods=['POST'])
    @require_api_auth
    def upload_photo_receipt():
        """Attach a photographed paper receipt to a payment"""
        session = get_session()
        stored_path = None
        try:
            photo = request.files.get('photoFile')
            if not photo or not photo.filename:
                raise ApiError('Payment ID and photo file are required')
            form = PhotoReceiptForm.model_validate(request.form.to_dict())
            if not _allowed_receipt_file(photo.filename):
                raise ApiError('Unsupported file type',
                               details={'allowed': sorted(current_app.config['ALLOWED_RECEIPT_EXTENSIONS'])})

            payment = session.query(FeePayment).filter_by(id=form.payment_id, school_id=g.school_id).first()
            if not payment:
                return json_error('Payment not found', 404)

            receipt_number = form.receipt_number or payment.receipt_number

            ext = photo.filename.rsplit('.', 1)[1].lower()
            timestamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
            filename = f"receipt_{secure_filename(receipt_number)}_{timestamp}.{ext}"

            photo_receipt = PhotoReceipt(
                payment_id=payment.id,
                receipt_number=receipt_number,
                photo_path=f"{current_app.config['UPLOAD_URL_PREFIX']}/receipts/{filename}",
                notes=form.notes,
                amount=form.amount,
                payment_method=form.payment_method,
                capture_date=form.capture_date,
            )
            session.add(photo_receipt)
            session.flush()

            stored_path = os.path.join(_receipts_dir(), filename)
            photo.save(stored_path)
            session.commit()

            logger.info(f"Photo receipt {filename} stored for payment {payment.id}")
            return jsonify({'message': 'Photo receipt uploaded successfully',
                            'photoReceipt': photo_receipt.to_dict()}), 201
        except Exception as e:
            session.rollback()
            if stored_path and os.path.exists(stored_path):
                os.remove(stored_path)
            return handle_api_exception(e, 'uploading photo receipt')
        finally:
            session.close()

    @api_bp.route('/receipts/photo', methods=['GET'])
    @require_api_auth
    def list_photo_receipts():
        session = get_session()
        try:
            query = session.query(PhotoReceipt).join(FeePayment).options(
                joinedload(PhotoReceipt.payment).joinedload(FeePayment.student)
            ).filter(FeePayment.school_id == g.school_id)

            payment_id = query_int('paymentId')
            receipt_number = request.args.get('receiptNumber')
            if payment_id:
                query = query.filter(PhotoReceipt.payment_id == payment_id)
            if receipt_number:
                query = query.filter(PhotoReceipt.receipt_number == receipt_number)

            photos = query.order_by(PhotoReceipt.uploaded_at.desc(), PhotoReceipt.id.desc()).all()
            return jsonify({'photoReceipts': [p.to_dict() for p in photos]})
        except Exception as e:
            return handle_api_exception(e, 'fetching photo receipts')
        finally:
            session.close()
