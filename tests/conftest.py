import itertools
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from main import create_app
from db_single import get_session, create_school
from models import School, AcademicYear, Term, SchoolClass
from fee_models import FeeType, FeeStructure, PaymentMethod, FeeFrequencyEnum

ADMIN_PASSWORD = 'secret123'


def _seed_school(slug, name, admin_username):
    """School with one current year, one term, two classes, two fee types, cash and a Grade 9 tuition structure"""
    ok, message = create_school(slug, name, email=f'office@{slug}.edu',
                                admin_username=admin_username, admin_password=ADMIN_PASSWORD)
    assert ok, message

    session = get_session()
    try:
        school = session.query(School).filter_by(slug=slug).one()
        year = AcademicYear(school_id=school.id, year='2024-2025', start_date=date(2024, 9, 1),
                            end_date=date(2025, 6, 30), is_current=True)
        session.add(year)
        session.flush()

        term = Term(academic_year_id=year.id, name='Term 1', order=1,
                    start_date=date(2024, 9, 1), end_date=date(2024, 12, 15), is_current=True)
        grade9 = SchoolClass(school_id=school.id, name='Grade 9', level=9, capacity=30)
        grade10 = SchoolClass(school_id=school.id, name='Grade 10', level=10, capacity=30)
        tuition = FeeType(school_id=school.id, name='Tuition Fee', name_key='tuition fee',
                          frequency=FeeFrequencyEnum.TERM)
        library = FeeType(school_id=school.id, name='Library Fee', name_key='library fee',
                          frequency=FeeFrequencyEnum.TERM, is_mandatory=False)
        cash = PaymentMethod(school_id=school.id, name='Cash', name_key='cash')
        session.add_all([term, grade9, grade10, tuition, library, cash])
        session.flush()

        structure = FeeStructure(
            school_id=school.id, academic_year_id=year.id, class_id=grade9.id, fee_type_id=tuition.id,
            amount=Decimal('900.00'), term1_amount=Decimal('300.00'),
            term2_amount=Decimal('300.00'), term3_amount=Decimal('300.00'),
        )
        session.add(structure)
        session.commit()

        return SimpleNamespace(
            id=school.id, slug=slug, admin_username=admin_username,
            year_id=year.id, term_id=term.id, grade9_id=grade9.id, grade10_id=grade10.id,
            tuition_id=tuition.id, library_id=library.id, cash_id=cash.id, structure_id=structure.id,
        )
    finally:
        session.close()


def login(client, username, password=ADMIN_PASSWORD):
    resp = client.post('/api/auth/login', json={'username': username, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def school(app):
    return _seed_school('greenfield', 'Greenfield Academy', 'gfadmin')


@pytest.fixture
def other_school(app):
    return _seed_school('riverside', 'Riverside High', 'rsadmin')


@pytest.fixture
def admin_client(app, school):
    return login(app.test_client(), school.admin_username)


@pytest.fixture
def other_admin_client(app, other_school):
    return login(app.test_client(), other_school.admin_username)


@pytest.fixture
def superadmin_client(app):
    return login(app.test_client(), 'superadmin', 'admin123')


@pytest.fixture
def create_student(admin_client, school):
    counter = itertools.count(1)

    def _create(**overrides):
        n = next(counter)
        payload = {
            'firstName': f'Pupil{n:02d}',
            'lastName': 'Tester',
            'classId': school.grade9_id,
            'academicYearId': school.year_id,
        }
        payload.update(overrides)
        resp = admin_client.post('/api/students', json=payload)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    return _create


@pytest.fixture
def record_payment(admin_client, school):
    def _pay(student_id, details, expected_status=201, **overrides):
        payload = {
            'studentId': student_id,
            'academicYearId': school.year_id,
            'termId': school.term_id,
            'paymentMethodId': school.cash_id,
            'amountPaid': sum(amount for _, amount in details),
            'paymentDetails': [{'feeTypeId': fee_type_id, 'amount': amount} for fee_type_id, amount in details],
        }
        payload.update(overrides)
        resp = admin_client.post('/api/payments', json=payload)
        assert resp.status_code == expected_status, resp.get_json()
        return resp.get_json()

    return _pay
