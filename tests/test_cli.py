from db_single import get_session
from models import School, Student, User


def test_add_school_and_list(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['add-school', '--slug', 'lakeside', '--name', 'Lakeside College'])
    assert 'created successfully' in result.output

    result = runner.invoke(args=['list-schools'])
    assert 'Lakeside College' in result.output
    assert 'Slug: lakeside' in result.output


def test_add_school_twice_reports_error(app):
    runner = app.test_cli_runner()
    runner.invoke(args=['add-school', '--slug', 'lakeside', '--name', 'Lakeside College'])
    result = runner.invoke(args=['add-school', '--slug', 'lakeside', '--name', 'Lakeside Again'])
    assert 'already exists' in result.output


def test_create_school_admin(app, school):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        'create-school-admin', '--slug', school.slug, '--username', 'deputy',
        '--email', 'deputy@greenfield.edu', '--password', 'deputy123',
    ])
    assert 'School admin created' in result.output

    session = get_session()
    try:
        user = session.query(User).filter_by(username='deputy').one()
        assert user.school_id == school.id
        assert user.check_password('deputy123')
    finally:
        session.close()


def test_create_superadmin(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        'create-superadmin', '--username', 'ops', '--email', 'ops@platform.io', '--password', 'ops12345',
    ])
    assert "Superadmin 'ops' created" in result.output

    client = app.test_client()
    resp = client.post('/api/auth/login', json={'username': 'ops', 'password': 'ops12345'})
    assert resp.get_json()['user']['role'] == 'superadmin'


def test_seed_demo(app, school):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['seed-demo', '--slug', school.slug])
    assert 'Demo data seeded successfully' in result.output

    session = get_session()
    try:
        school_row = session.query(School).filter_by(slug=school.slug).one()
        assert session.query(Student).filter_by(school_id=school_row.id).count() == 5
    finally:
        session.close()

    # running it again adds nothing new
    result = runner.invoke(args=['seed-demo', '--slug', school.slug])
    assert 'Balances charged: 0' in result.output


def test_seed_demo_unknown_school(app):
    result = app.test_cli_runner().invoke(args=['seed-demo', '--slug', 'nowhere'])
    assert 'not found' in result.output
