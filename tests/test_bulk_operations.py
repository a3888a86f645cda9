import csv
import io


def _row(school, student_id, **overrides):
    row = {
        'firstName': 'Imported',
        'lastName': student_id,
        'studentId': student_id,
        'classId': school.grade9_id,
        'academicYearId': school.year_id,
    }
    row.update(overrides)
    return row


def test_import_students_json(admin_client, school):
    resp = admin_client.post('/api/bulk-operations/import-students', json={'students': [
        _row(school, 'IMP-001', gender='female', dateOfBirth='2010-03-04'),
        _row(school, 'IMP-002', classId=school.grade10_id),
    ]})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['success'] is True
    assert body['importedCount'] == 2
    assert body['errorCount'] == 0
    assert [s['studentId'] for s in body['students']] == ['IMP-001', 'IMP-002']
    assert body['students'][1]['class'] == 'Grade 10'

    listing = admin_client.get('/api/students?search=IMP-001').get_json()['students']
    assert listing[0]['gender'] == 'FEMALE'
    assert listing[0]['dateOfBirth'] == '2010-03-04'


def test_import_rejects_unknown_references(admin_client, school, other_school):
    resp = admin_client.post('/api/bulk-operations/import-students', json={'students': [
        _row(school, 'OK-1'),
        _row(school, 'BAD-1', classId=other_school.grade9_id),
        _row(school, 'BAD-2', academicYearId=99999),
    ]})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['error'] == 'Validation errors found'
    assert [(e['row'], e['field']) for e in body['validationErrors']] == [(2, 'classId'), (3, 'academicYearId')]
    assert admin_client.get('/api/students').get_json()['pagination']['total'] == 0


def test_import_rejects_duplicates(admin_client, create_student, school):
    create_student(admissionNumber='TAKEN-1')
    resp = admin_client.post('/api/bulk-operations/import-students', json={'students': [
        _row(school, 'TAKEN-1'),
        _row(school, 'NEW-1'),
        _row(school, 'NEW-1'),
    ]})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['error'] == 'Duplicate student IDs found'
    assert body['duplicates'] == [{'row': 1, 'studentId': 'TAKEN-1'}, {'row': 3, 'studentId': 'NEW-1'}]
    assert admin_client.get('/api/students').get_json()['pagination']['total'] == 1


def test_reference_errors_win_over_duplicates(admin_client, create_student, school):
    create_student(admissionNumber='TAKEN-2')
    resp = admin_client.post('/api/bulk-operations/import-students', json={'students': [
        _row(school, 'TAKEN-2', classId=99999),
    ]})
    body = resp.get_json()
    assert body['error'] == 'Validation errors found'
    assert 'duplicates' not in body


def test_import_schema_errors(admin_client, school):
    resp = admin_client.post('/api/bulk-operations/import-students', json={'students': [
        {'firstName': 'No', 'lastName': 'Id', 'classId': school.grade9_id, 'academicYearId': school.year_id},
    ]})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Validation error'

    empty = admin_client.post('/api/bulk-operations/import-students', json={'students': []})
    assert empty.status_code == 400


def test_import_students_csv_upload(admin_client, school):
    content = (
        'firstName,lastName,studentId,email,classId,academicYearId,status\n'
        f'Kemi,Adeyemi,CSV-1,kemi@greenfield.edu,{school.grade9_id},{school.year_id},ACTIVE\n'
        f'Tom,Baker,CSV-2,,{school.grade9_id},{school.year_id},\n'
    )
    resp = admin_client.post(
        '/api/bulk-operations/import-students',
        data={'file': (io.BytesIO(content.encode('utf-8')), 'students.csv')},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['importedCount'] == 2


def test_import_rejects_non_csv_upload(admin_client):
    resp = admin_client.post(
        '/api/bulk-operations/import-students',
        data={'file': (io.BytesIO(b'not a csv'), 'students.xlsx')},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 400


def test_import_template(admin_client):
    resp = admin_client.get('/api/bulk-operations/import-students')
    assert resp.status_code == 200
    assert resp.headers['Content-Type'].startswith('text/csv')
    header = next(csv.reader(io.StringIO(resp.get_data(as_text=True))))
    assert header[:3] == ['firstName', 'lastName', 'studentId']


def test_export_students_csv_round_trips_quoting(admin_client, create_student):
    create_student(firstName='Sean', lastName='O"Neil, Jr', parentName='Mary O\'Neil')
    resp = admin_client.post('/api/bulk-operations/export-data', json={'type': 'students'})
    assert resp.status_code == 200
    assert 'attachment; filename="students-export.csv"' in resp.headers['Content-Disposition']

    rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
    assert len(rows) == 1
    assert rows[0]['Last Name'] == 'O"Neil, Jr'
    assert rows[0]['Parent Name'] == "Mary O'Neil"
    assert rows[0]['Class'] == 'Grade 9'


def test_export_empty_csv(admin_client, school):
    resp = admin_client.post('/api/bulk-operations/export-data', json={'type': 'payments', 'format': 'csv'})
    assert resp.get_data(as_text=True) == 'No data available'


def test_export_json_with_filters(admin_client, create_student, record_payment, school):
    first = create_student()
    second = create_student(classId=school.grade10_id)
    record_payment(first['id'], [(school.tuition_id, 50)], paymentDate='2024-10-01')
    record_payment(second['id'], [(school.tuition_id, 70)], paymentDate='2024-12-01')

    resp = admin_client.post('/api/bulk-operations/export-data', json={
        'type': 'payments', 'format': 'json',
        'filters': {'startDate': '2024-11-01', 'endDate': '2024-12-31'},
    })
    body = resp.get_json()
    assert body['success'] is True
    assert body['filename'] == 'payments-export.json'
    assert body['recordCount'] == 1
    assert body['data'][0]['Amount'] == 70.0
    assert body['data'][0]['Fee Types'] == 'Tuition Fee'


def test_export_all_csv_sections(admin_client, create_student, school):
    create_student()
    resp = admin_client.post('/api/bulk-operations/export-data', json={'type': 'all'})
    text = resp.get_data(as_text=True)
    for section in ('# students', '# payments', '# feeBalances', '# feeStructures'):
        assert section in text
    assert 'complete-export.csv' in resp.headers['Content-Disposition']


def test_export_rejects_unknown_type(admin_client):
    resp = admin_client.post('/api/bulk-operations/export-data', json={'type': 'teachers'})
    assert resp.status_code == 400


def test_import_rejects_non_utf8_csv(admin_client, school):
    resp = admin_client.post(
        '/api/bulk-operations/import-students',
        data={'file': (io.BytesIO(b'\xff\xfefirstName,lastName\n'), 'students.csv')},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'CSV file must be UTF-8 encoded'
