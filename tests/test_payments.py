import re


def _balances(client, student_id):
    return client.get(f'/api/fee-balances?studentId={student_id}').get_json()['feeBalances']


def test_payment_creates_balance_from_structure(admin_client, create_student, record_payment, school):
    student = create_student()
    payment = record_payment(student['id'], [(school.tuition_id, 100)])

    assert re.match(r'^RCP-\d{6}-\d{5}$', payment['receiptNumber'])
    assert payment['amountPaid'] == 100.0
    assert payment['createdBy'] == school.admin_username

    [balance] = _balances(admin_client, student['id'])
    assert balance['amountCharged'] == 300.0
    assert balance['amountPaid'] == 100.0
    assert balance['balance'] == 200.0
    assert balance['status'] == 'PARTIAL'


def test_second_payment_increments_same_balance(admin_client, create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 100)])
    record_payment(student['id'], [(school.tuition_id, 50)])

    [balance] = _balances(admin_client, student['id'])
    assert balance['amountPaid'] == 150.0
    assert balance['balance'] == 150.0


def test_full_payment_marks_balance_paid(admin_client, create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 300)])

    [balance] = _balances(admin_client, student['id'])
    assert balance['balance'] == 0.0
    assert balance['status'] == 'PAID'


def test_payment_without_structure_charges_nothing(admin_client, create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.library_id, 40)])

    [balance] = _balances(admin_client, student['id'])
    assert balance['amountCharged'] == 0.0
    assert balance['balance'] == -40.0
    assert balance['status'] == 'PAID'


def test_split_payment_touches_each_fee_type(admin_client, create_student, record_payment, school):
    student = create_student()
    payment = record_payment(student['id'], [(school.tuition_id, 200), (school.library_id, 30)])

    assert len(payment['paymentDetails']) == 2
    by_type = {b['feeTypeId']: b for b in _balances(admin_client, student['id'])}
    assert by_type[school.tuition_id]['amountPaid'] == 200.0
    assert by_type[school.library_id]['amountPaid'] == 30.0


def test_details_must_sum_to_amount(admin_client, create_student, school):
    student = create_student()
    resp = admin_client.post('/api/payments', json={
        'studentId': student['id'],
        'amountPaid': 100,
        'paymentDetails': [{'feeTypeId': school.tuition_id, 'amount': 60}],
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Validation error'
    assert _balances(admin_client, student['id']) == []


def test_payment_needs_details(admin_client, create_student):
    student = create_student()
    resp = admin_client.post('/api/payments', json={
        'studentId': student['id'], 'amountPaid': 100, 'paymentDetails': [],
    })
    assert resp.status_code == 400


def test_duplicate_receipt_number_rejected(create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 10)], receiptNumber='MANUAL-1')
    body = record_payment(student['id'], [(school.tuition_id, 10)], expected_status=400, receiptNumber='MANUAL-1')
    assert body['error'] == 'Receipt number already exists'


def test_generated_receipt_numbers_are_sequential(create_student, record_payment, school):
    student = create_student()
    first = record_payment(student['id'], [(school.tuition_id, 10)], paymentDate='2024-10-01')
    second = record_payment(student['id'], [(school.tuition_id, 10)], paymentDate='2024-10-02')
    assert first['receiptNumber'] == 'RCP-202410-00001'
    assert second['receiptNumber'] == 'RCP-202410-00002'


def test_payment_for_other_school_student_is_404(other_admin_client, create_student, school, other_school):
    student = create_student()
    resp = other_admin_client.post('/api/payments', json={
        'studentId': student['id'],
        'amountPaid': 10,
        'paymentDetails': [{'feeTypeId': other_school.tuition_id, 'amount': 10}],
    })
    assert resp.status_code == 404


def test_unknown_fee_type_rejected(admin_client, create_student, other_school):
    student = create_student()
    resp = admin_client.post('/api/payments', json={
        'studentId': student['id'],
        'amountPaid': 10,
        'paymentDetails': [{'feeTypeId': other_school.tuition_id, 'amount': 10}],
    })
    assert resp.status_code == 400
    assert resp.get_json()['details'] == {'feeTypeIds': [other_school.tuition_id]}


def test_list_and_get_payments(admin_client, create_student, record_payment, school):
    student = create_student()
    other = create_student()
    payment = record_payment(student['id'], [(school.tuition_id, 75)])
    record_payment(other['id'], [(school.tuition_id, 20)])

    listing = admin_client.get(f"/api/payments?studentId={student['id']}").get_json()
    assert [p['id'] for p in listing['payments']] == [payment['id']]
    assert listing['pagination']['total'] == 1

    detail = admin_client.get(f"/api/payments/{payment['id']}").get_json()
    assert detail['student']['id'] == student['id']
    assert detail['paymentDetails'][0]['feeType']['name'] == 'Tuition Fee'
    assert detail['receipts'] == []

    assert admin_client.get('/api/payments/99999').status_code == 404
