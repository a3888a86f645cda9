import re
from datetime import date


def test_login_rejects_bad_password(client, school):
    resp = client.post('/api/auth/login', json={'username': school.admin_username, 'password': 'wrong'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Invalid credentials'


def test_me_returns_user_and_school(admin_client, school):
    body = admin_client.get('/api/auth/me').get_json()
    assert body['user']['username'] == school.admin_username
    assert body['school']['slug'] == 'greenfield'


def test_students_require_login(client, school):
    assert client.get('/api/students').status_code == 401


def test_create_student_generates_admission_number(create_student, school):
    student = create_student()
    assert re.match(rf'^ADM-{date.today().year}-\d{{4}}$', student['admissionNumber'])
    assert student['class']['id'] == school.grade9_id
    assert student['status'] == 'ACTIVE'


def test_create_student_defaults_to_current_year(admin_client, school):
    resp = admin_client.post('/api/students', json={
        'firstName': 'Ada', 'lastName': 'Lovelace', 'classId': school.grade9_id,
    })
    assert resp.status_code == 201
    assert resp.get_json()['academicYearId'] == school.year_id


def test_create_student_missing_fields(admin_client, school):
    resp = admin_client.post('/api/students', json={'firstName': 'Only'})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['error'] == 'Validation error'
    missing = {tuple(d['loc']) for d in body['details']}
    assert ('lastName',) in missing
    assert ('classId',) in missing


def test_duplicate_admission_number_rejected(admin_client, create_student, school):
    create_student(admissionNumber='GF-001')
    resp = admin_client.post('/api/students', json={
        'admissionNumber': 'GF-001', 'firstName': 'Other', 'lastName': 'Kid',
        'classId': school.grade9_id, 'academicYearId': school.year_id,
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Admission number already exists'


def test_duplicate_email_rejected(admin_client, create_student, school):
    create_student(email='kid@greenfield.edu')
    resp = admin_client.post('/api/students', json={
        'firstName': 'Second', 'lastName': 'Kid', 'email': 'KID@greenfield.edu',
        'classId': school.grade9_id, 'academicYearId': school.year_id,
    })
    assert resp.status_code == 400


def test_same_admission_number_allowed_in_other_school(create_student, other_admin_client, other_school):
    create_student(admissionNumber='SHARED-1')
    resp = other_admin_client.post('/api/students', json={
        'admissionNumber': 'SHARED-1', 'firstName': 'River', 'lastName': 'Kid',
        'classId': other_school.grade9_id, 'academicYearId': other_school.year_id,
    })
    assert resp.status_code == 201


def test_unknown_class_rejected(admin_client, other_school, school):
    resp = admin_client.post('/api/students', json={
        'firstName': 'Lost', 'lastName': 'Kid', 'classId': other_school.grade9_id,
        'academicYearId': school.year_id,
    })
    assert resp.status_code == 400


def test_pagination_window(admin_client, create_student):
    for _ in range(25):
        create_student()

    page2 = admin_client.get('/api/students?page=2&limit=10').get_json()
    assert len(page2['students']) == 10
    assert page2['pagination'] == {'page': 2, 'limit': 10, 'total': 25, 'pages': 3, 'totalPages': 3}

    page3 = admin_client.get('/api/students?page=3&limit=10').get_json()
    assert len(page3['students']) == 5

    page1 = admin_client.get('/api/students?page=1&limit=10').get_json()
    seen = {s['id'] for s in page1['students'] + page2['students'] + page3['students']}
    assert len(seen) == 25


def test_limit_is_capped(admin_client, create_student):
    create_student()
    body = admin_client.get('/api/students?limit=5000').get_json()
    assert body['pagination']['limit'] == 100


def test_search_is_case_insensitive(admin_client, create_student):
    create_student(firstName='Chinedu', lastName='Eze')
    create_student(firstName='Maria', lastName='Lopez', parentName='Carlos Lopez')

    by_name = admin_client.get('/api/students?search=CHINED').get_json()
    assert [s['firstName'] for s in by_name['students']] == ['Chinedu']

    by_parent = admin_client.get('/api/students?search=carlos').get_json()
    assert [s['firstName'] for s in by_parent['students']] == ['Maria']


def test_students_are_scoped_to_school(admin_client, other_admin_client, create_student):
    student = create_student()
    assert other_admin_client.get(f"/api/students/{student['id']}").status_code == 404
    assert other_admin_client.get('/api/students').get_json()['pagination']['total'] == 0


def test_update_student_applies_only_sent_fields(admin_client, create_student, school):
    student = create_student(phone='+15550001')
    resp = admin_client.put(f"/api/students/{student['id']}", json={'classId': school.grade10_id})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['classId'] == school.grade10_id
    assert body['phone'] == '+15550001'
    assert body['firstName'] == student['firstName']


def test_delete_without_payments_is_hard(admin_client, create_student):
    student = create_student()
    resp = admin_client.delete(f"/api/students/{student['id']}")
    assert resp.status_code == 200
    assert resp.get_json()['softDeleted'] is False
    assert admin_client.get(f"/api/students/{student['id']}").status_code == 404


def test_delete_with_payments_is_soft(admin_client, create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 100)])

    resp = admin_client.delete(f"/api/students/{student['id']}")
    assert resp.status_code == 200
    assert resp.get_json()['softDeleted'] is True

    detail = admin_client.get(f"/api/students/{student['id']}")
    assert detail.status_code == 200
    assert detail.get_json()['status'] == 'INACTIVE'


def test_student_detail_includes_fee_statistics(admin_client, create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 120)], paymentDate='2024-10-05')

    body = admin_client.get(f"/api/students/{student['id']}").get_json()
    assert body['feeStatistics'] == {
        'totalCharged': 300.0,
        'totalPaid': 120.0,
        'outstandingBalance': 180.0,
        'lastPaymentDate': '2024-10-05',
    }
    assert len(body['feeBalances']) == 1
    assert len(body['feePayments']) == 1


def test_student_statement(admin_client, create_student, record_payment, school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 100), (school.library_id, 25)])

    body = admin_client.get(f"/api/students/{student['id']}/statement").get_json()
    lines = {line['feeType']: line for line in body['feeLines']}
    assert lines['Tuition Fee']['balance'] == 200.0
    assert lines['Library Fee']['paid'] == 25.0
    assert len(body['payments']) == 1
    assert body['totals']['totalPaid'] == 125.0


def test_classes_list_counts_students(admin_client, create_student, school):
    create_student()
    create_student()
    classes = admin_client.get('/api/classes').get_json()['classes']
    counts = {c['name']: c['studentCount'] for c in classes}
    assert counts == {'Grade 9': 2, 'Grade 10': 0}


def test_create_class(admin_client):
    resp = admin_client.post('/api/classes', json={'name': 'Grade 11', 'level': 11, 'capacity': 35})
    assert resp.status_code == 201
    assert resp.get_json()['capacity'] == 35


def test_only_one_current_academic_year(admin_client, school):
    resp = admin_client.post('/api/academic-years', json={
        'year': '2025-2026', 'startDate': '2025-09-01', 'endDate': '2026-06-30', 'isCurrent': True,
    })
    assert resp.status_code == 201

    years = admin_client.get('/api/academic-years').get_json()['academicYears']
    current = [y['year'] for y in years if y['isCurrent']]
    assert current == ['2025-2026']


def test_academic_year_dates_must_be_ordered(admin_client):
    resp = admin_client.post('/api/academic-years', json={
        'year': '2026-2027', 'startDate': '2027-06-30', 'endDate': '2026-09-01',
    })
    assert resp.status_code == 400


def test_terms_for_year(admin_client, school):
    resp = admin_client.post(f'/api/academic-years/{school.year_id}/terms', json={'name': 'Term 2', 'order': 2})
    assert resp.status_code == 201

    terms = admin_client.get(f'/api/academic-years/{school.year_id}/terms').get_json()['terms']
    assert sorted(t['name'] for t in terms) == ['Term 1', 'Term 2']
