"""
Demo data for a newly created school
Academic years, terms, classes, fee types, payment methods, fee structures and sample students
"""

from datetime import date
from decimal import Decimal
import logging

from models import AcademicYear, Term, SchoolClass, Student, GenderEnum
from fee_models import FeeType, FeeStructure, PaymentMethod, FeeFrequencyEnum
from fee_helpers import apply_fee_structure

logger = logging.getLogger(__name__)

ACADEMIC_YEARS = [
    {"year": "2024-2025", "start_date": date(2024, 9, 1), "end_date": date(2025, 6, 30), "is_current": True},
    {"year": "2025-2026", "start_date": date(2025, 9, 1), "end_date": date(2026, 6, 30), "is_current": False},
]

TERMS = [
    {"name": "Term 1", "order": 1, "start_date": date(2024, 9, 1), "end_date": date(2024, 12, 15), "is_current": True},
    {"name": "Term 2", "order": 2, "start_date": date(2025, 1, 15), "end_date": date(2025, 4, 15), "is_current": False},
    {"name": "Term 3", "order": 3, "start_date": date(2025, 4, 16), "end_date": date(2025, 6, 30), "is_current": False},
]

CLASSES = [
    {"name": "Grade 9", "level": 9},
    {"name": "Grade 10", "level": 10},
    {"name": "Grade 11", "level": 11},
    {"name": "Grade 12", "level": 12},
]

FEE_TYPES = [
    {"name": "Tuition Fee", "description": "Main academic tuition fee", "is_mandatory": True, "is_recurring": True, "frequency": FeeFrequencyEnum.TERM},
    {"name": "Library Fee", "description": "Library and resource fee", "is_mandatory": True, "is_recurring": True, "frequency": FeeFrequencyEnum.TERM},
    {"name": "Laboratory Fee", "description": "Science laboratory fee", "is_mandatory": True, "is_recurring": True, "frequency": FeeFrequencyEnum.TERM},
    {"name": "Sports Fee", "description": "Sports and physical education fee", "is_mandatory": False, "is_recurring": True, "frequency": FeeFrequencyEnum.TERM},
    {"name": "Admission Fee", "description": "One-time admission fee", "is_mandatory": True, "is_recurring": False, "frequency": FeeFrequencyEnum.ONCE},
]

PAYMENT_METHODS = [
    {"name": "Cash", "description": "Cash payment"},
    {"name": "Bank Transfer", "description": "Bank transfer payment"},
    {"name": "Mobile Money", "description": "Mobile money transfer"},
    {"name": "Cheque", "description": "Cheque payment"},
]

STUDENTS = [
    {"first_name": "Amina", "last_name": "Okafor", "gender": GenderEnum.FEMALE, "class": "Grade 9", "parent_name": "Grace Okafor", "parent_phone": "+1555000101"},
    {"first_name": "Daniel", "last_name": "Mensah", "gender": GenderEnum.MALE, "class": "Grade 9", "parent_name": "Kofi Mensah", "parent_phone": "+1555000102"},
    {"first_name": "Priya", "last_name": "Sharma", "gender": GenderEnum.FEMALE, "class": "Grade 10", "parent_name": "Anil Sharma", "parent_phone": "+1555000103"},
    {"first_name": "Lucas", "last_name": "Silva", "gender": GenderEnum.MALE, "class": "Grade 11", "parent_name": "Marta Silva", "parent_phone": "+1555000104"},
    {"first_name": "Noah", "last_name": "Kim", "gender": GenderEnum.MALE, "class": "Grade 12", "parent_name": "Ji-woo Kim", "parent_phone": "+1555000105"},
]


def _structure_amounts(fee_type, level):
    """One-time fees land in term 1; recurring fees split evenly, seniors pay more"""
    if fee_type.frequency == FeeFrequencyEnum.ONCE:
        return Decimal('500.00'), Decimal('500.00'), Decimal('0.00'), Decimal('0.00')
    total = Decimal('800.00') if level >= 11 else Decimal('600.00')
    per_term = (total / 3).quantize(Decimal('0.01'))
    return total, per_term, per_term, total - per_term * 2


def seed_school_data(session, school):
    """Populate a school with demo setup data and charge term 1 fees; caller commits"""
    years = {}
    for year_data in ACADEMIC_YEARS:
        year = session.query(AcademicYear).filter_by(school_id=school.id, year=year_data["year"]).first()
        if not year:
            year = AcademicYear(school_id=school.id, **year_data)
            session.add(year)
        years[year_data["year"]] = year
    session.flush()

    current_year = years["2024-2025"]
    terms = {}
    for term_data in TERMS:
        term = session.query(Term).filter_by(academic_year_id=current_year.id, order=term_data["order"]).first()
        if not term:
            term = Term(academic_year_id=current_year.id, **term_data)
            session.add(term)
        terms[term_data["order"]] = term

    classes = {}
    for class_data in CLASSES:
        school_class = session.query(SchoolClass).filter_by(school_id=school.id, name=class_data["name"]).first()
        if not school_class:
            school_class = SchoolClass(school_id=school.id, capacity=30, is_active=True, **class_data)
            session.add(school_class)
        classes[class_data["name"]] = school_class

    fee_types = []
    for fee_data in FEE_TYPES:
        fee_type = session.query(FeeType).filter_by(school_id=school.id, name_key=fee_data["name"].lower()).first()
        if not fee_type:
            fee_type = FeeType(school_id=school.id, name_key=fee_data["name"].lower(), is_active=True, **fee_data)
            session.add(fee_type)
        fee_types.append(fee_type)

    for method_data in PAYMENT_METHODS:
        if not session.query(PaymentMethod.id).filter_by(school_id=school.id, name_key=method_data["name"].lower()).first():
            session.add(PaymentMethod(school_id=school.id, name_key=method_data["name"].lower(), is_active=True, **method_data))
    session.flush()

    structures = []
    for school_class in classes.values():
        for fee_type in fee_types:
            structure = session.query(FeeStructure).filter_by(
                academic_year_id=current_year.id, class_id=school_class.id, fee_type_id=fee_type.id
            ).first()
            if not structure:
                amount, term1, term2, term3 = _structure_amounts(fee_type, school_class.level)
                structure = FeeStructure(
                    school_id=school.id,
                    academic_year_id=current_year.id,
                    class_id=school_class.id,
                    fee_type_id=fee_type.id,
                    amount=amount,
                    term1_amount=term1,
                    term2_amount=term2,
                    term3_amount=term3,
                    is_active=True,
                )
                session.add(structure)
            structures.append(structure)

    for index, student_data in enumerate(STUDENTS, start=1):
        admission_number = f"ADM-{current_year.start_date.year}-{index:04d}"
        if session.query(Student.id).filter_by(school_id=school.id, admission_number=admission_number).first():
            continue
        values = dict(student_data)
        school_class = classes[values.pop("class")]
        session.add(Student(
            school_id=school.id,
            admission_number=admission_number,
            class_id=school_class.id,
            academic_year_id=current_year.id,
            enrollment_date=current_year.start_date,
            **values
        ))
    session.flush()

    charged = 0
    for structure in structures:
        result = apply_fee_structure(session, structure, terms[1], terms[1].end_date)
        charged += result['created']
    session.flush()

    logger.info(f"🌱 Seeded demo data for {school.slug}: {len(classes)} classes, "
                f"{len(fee_types)} fee types, {len(structures)} fee structures, {charged} balances")
    return {
        'classes': len(classes),
        'feeTypes': len(fee_types),
        'feeStructures': len(structures),
        'balancesCreated': charged,
    }
