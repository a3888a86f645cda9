import pytest


@pytest.fixture
def charged_school(admin_client, create_student, record_payment, school):
    """Two Grade 9 students charged term 1 tuition (300 each); one has paid 100"""
    payer = create_student(firstName='Payer')
    create_student(firstName='Debtor')
    admin_client.post(f'/api/fee-structures/{school.structure_id}/apply',
                      json={'termId': school.term_id, 'dueDate': '2099-01-31'})
    record_payment(payer['id'], [(school.tuition_id, 100)], paymentDate='2024-10-15')
    return school


def test_collection_rate_is_zero_without_charges(admin_client, school):
    body = admin_client.get('/api/reports?type=financial').get_json()
    assert body['reportType'] == 'financial'
    assert body['summary']['collectionRate'] == '0'
    assert body['summary']['totalCharged'] == 0.0


def test_financial_report(admin_client, charged_school):
    body = admin_client.get('/api/reports?type=financial').get_json()
    assert body['summary'] == {
        'totalStudents': 2,
        'totalCharged': 600.0,
        'totalPayments': 100.0,
        'totalOutstanding': 500.0,
        'collectionRate': '16.67',
    }
    assert body['paymentsByMethod'] == {'Cash': 100.0}
    assert body['paymentsByMonth'] == {'October 2024': 100.0}
    assert body['recentPayments'][0]['studentName'] == 'Payer Tester'


def test_financial_report_date_filter(admin_client, charged_school):
    body = admin_client.get('/api/reports?type=financial&startDate=2024-11-01').get_json()
    assert body['summary']['totalPayments'] == 0.0


def test_student_report(admin_client, charged_school):
    body = admin_client.get('/api/reports?type=student').get_json()
    assert body['totalStudents'] == 2
    assert body['studentsByClass'] == {'Grade 9': 2}
    assert body['studentsByStatus'] == {'PARTIAL': 1, 'UNPAID': 1}
    payer = next(s for s in body['students'] if s['name'] == 'Payer Tester')
    assert payer['outstandingBalance'] == 200.0


def test_payment_report(admin_client, charged_school, create_student, record_payment, school):
    extra = create_student()
    record_payment(extra['id'], [(school.tuition_id, 50), (school.library_id, 25)])

    body = admin_client.get('/api/reports?type=payment').get_json()
    assert body['summary'] == {'totalPayments': 2, 'totalAmount': 175.0, 'averagePayment': '87.50'}
    assert body['paymentsByFeeType'] == {'Tuition Fee': 150.0, 'Library Fee': 25.0}


def test_balance_report_counts_overdue(admin_client, charged_school, create_student, school):
    late = create_student()
    admin_client.post('/api/fee-balances', json={
        'studentId': late['id'], 'academicYearId': school.year_id,
        'feeTypeId': school.library_id, 'amountCharged': 40, 'dueDate': '2020-01-01',
    })

    body = admin_client.get('/api/reports?type=balance').get_json()
    assert body['summary']['overdueCount'] == 1
    assert body['summary']['overdueAmount'] == 40.0
    assert body['balancesByFeeType']['Tuition Fee'] == {'charged': 600.0, 'paid': 100.0, 'outstanding': 500.0}
    assert body['overdueBalances'][0]['feeType'] == 'Library Fee'


def test_invalid_report_type(admin_client, school):
    resp = admin_client.get('/api/reports?type=attendance')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid report type'


def test_dashboard_stats(admin_client, charged_school):
    body = admin_client.get('/api/dashboard/stats').get_json()
    assert body['totalStudents'] == 2
    assert body['totalCollected'] == 100.0
    assert body['totalOutstanding'] == 500.0
    assert body['collectionRate'] == '16.67'
    assert body['paymentCount'] == 1
    assert len(body['recentPayments']) == 1
    assert body['topOutstanding'][0]['balance'] == 300.0
    assert body['school']['slug'] == 'greenfield'


def test_settings_round_trip(admin_client, school):
    defaults = admin_client.get('/api/settings').get_json()
    assert defaults['settings']['currencySymbol'] == '$'
    assert defaults['settings']['theme'] == 'light'

    resp = admin_client.put('/api/settings', json={
        'phone': '+15550100',
        'settings': {'theme': 'dark', 'primaryColor': '#10b981'},
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['school']['phone'] == '+15550100'
    assert body['settings']['theme'] == 'dark'
    assert body['settings']['currencySymbol'] == '$'

    again = admin_client.put('/api/settings', json={'settings': {'currencySymbol': '£'}}).get_json()
    assert again['settings']['theme'] == 'dark'
    assert again['settings']['currencySymbol'] == '£'


def test_settings_validation(admin_client, school):
    resp = admin_client.put('/api/settings', json={'settings': {'primaryColor': 'blue'}})
    assert resp.status_code == 400
