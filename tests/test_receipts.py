import io
import os

import pytest


@pytest.fixture
def payment(create_student, record_payment, school):
    student = create_student(firstName='Receipt', lastName='Holder')
    return record_payment(student['id'], [(school.tuition_id, 150), (school.library_id, 20)],
                          referenceNumber='BANK-778')


def test_receipt_json(admin_client, payment):
    resp = admin_client.get(f"/api/receipts?paymentId={payment['id']}&format=json")
    receipt = resp.get_json()['receipt']
    assert receipt['receiptNumber'] == payment['receiptNumber']
    assert receipt['studentName'] == 'Receipt Holder'
    assert receipt['schoolName'] == 'Greenfield Academy'
    assert receipt['totalAmount'] == 170.0
    assert receipt['paymentMethod'] == 'Cash'
    assert {d['feeType'] for d in receipt['paymentDetails']} == {'Tuition Fee', 'Library Fee'}


def test_receipt_html(admin_client, payment):
    resp = admin_client.get(f"/api/receipts?paymentId={payment['id']}&format=html")
    assert resp.status_code == 200
    assert resp.headers['Content-Type'].startswith('text/html')
    html = resp.get_data(as_text=True)
    assert payment['receiptNumber'] in html
    assert 'BANK-778' in html
    assert '$170.00' in html


def test_receipt_pdf(admin_client, payment):
    resp = admin_client.get(f"/api/receipts?paymentId={payment['id']}")
    assert resp.status_code == 200
    assert resp.mimetype == 'application/pdf'
    assert resp.data.startswith(b'%PDF')


def test_receipt_requires_payment(admin_client, other_admin_client, payment):
    assert admin_client.get('/api/receipts').status_code == 400
    assert admin_client.get(f"/api/receipts?paymentId={payment['id']}&format=docx").status_code == 400
    assert other_admin_client.get(f"/api/receipts?paymentId={payment['id']}&format=json").status_code == 404


def test_receipt_uses_school_currency(admin_client, payment):
    admin_client.put('/api/settings', json={'settings': {'currencySymbol': '€'}})
    html = admin_client.get(f"/api/receipts?paymentId={payment['id']}&format=html").get_data(as_text=True)
    assert '€170.00' in html


def test_generate_and_download_receipt(admin_client, payment, app):
    resp = admin_client.post('/api/receipts', json={'paymentId': payment['id'], 'format': 'pdf'})
    assert resp.status_code == 201
    body = resp.get_json()
    receipt = body['receipt']
    assert receipt['format'] == 'pdf'
    assert receipt['downloadUrl'] == f"/api/receipts/{receipt['id']}/download"
    assert body['receiptData']['receiptNumber'] == payment['receiptNumber']

    generated = os.path.join(app.config['UPLOAD_FOLDER'], 'receipts', 'generated')
    assert os.listdir(generated) == [f"{payment['receiptNumber']}.pdf"]

    download = admin_client.get(receipt['downloadUrl'])
    assert download.status_code == 200
    assert download.data.startswith(b'%PDF')

    detail = admin_client.get(f"/api/payments/{payment['id']}").get_json()
    assert [r['id'] for r in detail['receipts']] == [receipt['id']]


def test_generate_json_receipt_has_no_file(admin_client, payment):
    resp = admin_client.post('/api/receipts', json={'paymentId': payment['id'], 'format': 'json'})
    assert resp.status_code == 201
    receipt_id = resp.get_json()['receipt']['id']

    download = admin_client.get(f'/api/receipts/{receipt_id}/download')
    assert download.get_json()['receipt']['receiptNumber'] == payment['receiptNumber']


def test_upload_photo_receipt(admin_client, payment, app):
    resp = admin_client.post('/api/receipts/photo', data={
        'paymentId': str(payment['id']),
        'photoFile': (io.BytesIO(b'\x89PNG\r\n\x1a\nfake-image'), 'paper slip.PNG'),
        'notes': 'Signed by bursar',
        'amount': '170.00',
        'paymentMethod': 'Cash',
        'captureDate': '2024-10-05T09:30:00',
    }, content_type='multipart/form-data')
    assert resp.status_code == 201, resp.get_json()

    photo = resp.get_json()['photoReceipt']
    assert photo['receiptNumber'] == payment['receiptNumber']
    assert photo['photoPath'].startswith(f"/static/uploads/receipts/receipt_{payment['receiptNumber']}_")
    assert photo['photoPath'].endswith('.png')
    assert photo['amount'] == 170.0
    assert photo['student']['firstName'] == 'Receipt'

    stored = os.path.join(app.config['UPLOAD_FOLDER'], 'receipts', os.path.basename(photo['photoPath']))
    with open(stored, 'rb') as fh:
        assert fh.read().endswith(b'fake-image')

    listing = admin_client.get(f"/api/receipts/photo?paymentId={payment['id']}").get_json()['photoReceipts']
    assert [p['id'] for p in listing] == [photo['id']]
    by_number = admin_client.get(f"/api/receipts/photo?receiptNumber={payment['receiptNumber']}").get_json()
    assert len(by_number['photoReceipts']) == 1


def test_photo_receipt_validation(admin_client, payment):
    missing = admin_client.post('/api/receipts/photo', data={'paymentId': str(payment['id'])},
                                content_type='multipart/form-data')
    assert missing.status_code == 400

    wrong_type = admin_client.post('/api/receipts/photo', data={
        'paymentId': str(payment['id']),
        'photoFile': (io.BytesIO(b'MZ'), 'virus.exe'),
    }, content_type='multipart/form-data')
    assert wrong_type.status_code == 400

    unknown = admin_client.post('/api/receipts/photo', data={
        'paymentId': '99999',
        'photoFile': (io.BytesIO(b'img'), 'slip.jpg'),
    }, content_type='multipart/form-data')
    assert unknown.status_code == 404


@pytest.mark.parametrize('amount', ['NaN', 'Infinity', '-5', 'abc'])
def test_photo_receipt_rejects_bad_amount(admin_client, payment, app, amount):
    resp = admin_client.post('/api/receipts/photo', data={
        'paymentId': str(payment['id']),
        'photoFile': (io.BytesIO(b'img'), 'slip.jpg'),
        'amount': amount,
    }, content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Validation error'

    receipts_dir = os.path.join(app.config['UPLOAD_FOLDER'], 'receipts')
    assert not os.path.isdir(receipts_dir) or os.listdir(receipts_dir) == []


def test_photo_file_removed_when_save_fails(admin_client, payment, app, monkeypatch):
    from sqlalchemy.orm import Session

    def failing_commit(self):
        raise RuntimeError('database went away')

    monkeypatch.setattr(Session, 'commit', failing_commit)
    resp = admin_client.post('/api/receipts/photo', data={
        'paymentId': str(payment['id']),
        'photoFile': (io.BytesIO(b'img'), 'slip.jpg'),
    }, content_type='multipart/form-data')
    assert resp.status_code == 500

    receipts_dir = os.path.join(app.config['UPLOAD_FOLDER'], 'receipts')
    assert os.listdir(receipts_dir) == []
