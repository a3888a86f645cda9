from conftest import login


def test_superadmin_routes_require_login(client):
    assert client.get('/api/superadmin/stats').status_code == 401


def test_school_admin_cannot_use_superadmin_routes(admin_client):
    resp = admin_client.get('/api/superadmin/schools')
    assert resp.status_code == 403
    assert resp.get_json()['error'] == 'Superadmin access required'


def test_platform_stats(superadmin_client, create_student, record_payment, school, other_school):
    student = create_student()
    record_payment(student['id'], [(school.tuition_id, 150)])

    body = superadmin_client.get('/api/superadmin/stats').get_json()
    assert body['totalSchools'] == 2
    assert body['activeSchools'] == 2
    assert body['totalStudents'] == 1
    assert body['totalPayments'] == 1
    assert body['totalRevenue'] == 150.0
    assert body['totalUsers'] == 2
    assert body['averageCollectionRate'] == '50.00'


def test_average_collection_rate_zero_without_charges(superadmin_client, school):
    assert superadmin_client.get('/api/superadmin/stats').get_json()['averageCollectionRate'] == '0'


def test_list_schools(superadmin_client, create_student, school, other_school):
    create_student()
    schools = superadmin_client.get('/api/superadmin/schools').get_json()['schools']
    counts = {s['slug']: s['studentCount'] for s in schools}
    assert counts == {'greenfield': 1, 'riverside': 0}


def test_create_school_with_admin(app, superadmin_client):
    resp = superadmin_client.post('/api/superadmin/schools', json={
        'name': 'Hilltop School',
        'slug': 'hilltop',
        'email': 'office@hilltop.edu',
        'adminUsername': 'hilladmin',
        'adminEmail': 'admin@hilltop.edu',
        'adminPassword': 'hilltop123',
    })
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['school']['slug'] == 'hilltop'

    hill_client = login(app.test_client(), 'hilladmin', 'hilltop123')
    me = hill_client.get('/api/auth/me').get_json()
    assert me['school']['name'] == 'Hilltop School'
    assert me['user']['role'] == 'school_admin'

    duplicate = superadmin_client.post('/api/superadmin/schools', json={
        'name': 'Hilltop Again', 'slug': 'hilltop', 'adminUsername': 'other', 'adminPassword': 'hilltop123',
    })
    assert duplicate.status_code == 400


def test_create_school_with_sample_data(app, superadmin_client):
    resp = superadmin_client.post('/api/superadmin/schools', json={
        'name': 'Demo School', 'slug': 'demo', 'adminUsername': 'demoadmin',
        'adminPassword': 'demo1234', 'createSampleData': True,
    })
    assert resp.status_code == 201

    demo = login(app.test_client(), 'demoadmin', 'demo1234')
    assert len(demo.get('/api/classes').get_json()['classes']) == 4
    assert demo.get('/api/students').get_json()['pagination']['total'] == 5
    names = {m['name'] for m in demo.get('/api/payment-methods').get_json()['paymentMethods']}
    assert {'Cash', 'Bank Transfer'} <= names
    assert demo.get('/api/fee-balances').get_json()['pagination']['total'] > 0


def test_create_school_validation(superadmin_client):
    resp = superadmin_client.post('/api/superadmin/schools', json={'name': 'No Slug'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Validation error'


def test_toggle_school_status_blocks_school_users(app, superadmin_client, admin_client, school):
    resp = superadmin_client.post(f'/api/superadmin/schools/{school.id}/toggle-status')
    assert resp.status_code == 200
    assert resp.get_json()['school']['isActive'] is False

    assert admin_client.get('/api/students').status_code == 403
    fresh = app.test_client().post('/api/auth/login', json={
        'username': school.admin_username, 'password': 'secret123',
    })
    assert fresh.status_code == 403

    superadmin_client.post(f'/api/superadmin/schools/{school.id}/toggle-status')
    assert admin_client.get('/api/students').status_code == 200


def test_add_school_user(app, superadmin_client, school):
    resp = superadmin_client.post(f'/api/superadmin/schools/{school.id}/users', json={
        'username': 'bursar', 'email': 'bursar@greenfield.edu', 'password': 'bursar123',
    })
    assert resp.status_code == 201
    assert resp.get_json()['user']['role'] == 'staff'

    staff = login(app.test_client(), 'bursar', 'bursar123')
    assert staff.get('/api/students').status_code == 200

    again = superadmin_client.post(f'/api/superadmin/schools/{school.id}/users', json={
        'username': 'bursar', 'email': 'bursar2@greenfield.edu', 'password': 'bursar123',
    })
    assert again.status_code == 400


def test_list_users(superadmin_client, school):
    users = superadmin_client.get('/api/superadmin/users').get_json()['users']
    by_name = {u['username']: u for u in users}
    assert by_name['superadmin']['school'] is None
    assert by_name[school.admin_username]['school']['slug'] == 'greenfield'


def test_superadmin_must_name_a_school(superadmin_client, create_student, school):
    create_student()
    assert superadmin_client.get('/api/students').status_code == 400
    assert superadmin_client.get('/api/students?schoolId=99999').status_code == 404

    body = superadmin_client.get(f'/api/students?schoolId={school.id}').get_json()
    assert body['pagination']['total'] == 1


def test_superadmin_export_uses_filter_school(superadmin_client, create_student, school):
    create_student()
    resp = superadmin_client.post('/api/bulk-operations/export-data', json={
        'type': 'students', 'format': 'json', 'filters': {'schoolId': school.id},
    })
    assert resp.status_code == 200
    assert resp.get_json()['recordCount'] == 1
