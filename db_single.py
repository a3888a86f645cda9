"""
Database management for single database multi-tenant system
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config import Config
from models import Base, School, User, UserRoleEnum
import fee_models  # noqa: F401  registers fee tables and Student relationships
import logging

logger = logging.getLogger(__name__)

# Global engine and session factory
ENGINE = None
SessionLocal = None


def _engine_options(database_uri, config):
    if database_uri.startswith('sqlite'):
        options = {'connect_args': {'check_same_thread': False}}
        if ':memory:' in database_uri or database_uri in ('sqlite://', 'sqlite:///'):
            # One shared connection so every session sees the same in-memory database
            options['poolclass'] = StaticPool
        return options
    return dict(config.SQLALCHEMY_ENGINE_OPTIONS)


def _enable_sqlite_savepoints(engine):
    """Let SQLAlchemy emit BEGIN itself so per-row SAVEPOINTs roll back correctly on pysqlite"""

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_database(database_uri=None, config=None):
    """Initialize database engine and session factory"""
    global ENGINE, SessionLocal

    config = config or Config()
    database_uri = database_uri or config.get_database_uri()

    if ENGINE is not None:
        ENGINE.dispose()

    ENGINE = create_engine(database_uri, **_engine_options(database_uri, config))
    if database_uri.startswith('sqlite'):
        _enable_sqlite_savepoints(ENGINE)
    SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, expire_on_commit=False)

    logger.info(f"Database initialized: {ENGINE.url.render_as_string(hide_password=True)}")
    return ENGINE, SessionLocal


def get_session():
    """Get a database session"""
    if SessionLocal is None:
        init_database()
    return SessionLocal()


def create_tables():
    """Create every table registered on Base.metadata"""
    Base.metadata.create_all(ENGINE)


def create_school(slug: str, name: str, **kwargs) -> tuple[bool, str]:
    """
    Create a new school (tenant) with optional first admin user and demo data

    Args:
        slug: URL-friendly identifier (e.g., 'rodrise')
        name: Full school name (e.g., 'Rodrise School')
        **kwargs: address, phone, email, website, admin_username, admin_email,
                  admin_password, create_sample_data

    Returns:
        tuple: (success: bool, message: str)
    """
    session = get_session()
    try:
        # Check if slug already exists
        existing = session.query(School).filter_by(slug=slug).first()
        if existing:
            return False, f"School with slug '{slug}' already exists"

        school = School(
            slug=slug,
            name=name,
            address=kwargs.get('address'),
            phone=kwargs.get('phone'),
            email=kwargs.get('email'),
            website=kwargs.get('website'),
            is_active=True
        )

        session.add(school)
        session.flush()  # Get the ID but don't commit yet

        if kwargs.get('admin_username') and kwargs.get('admin_password'):
            if session.query(User).filter_by(username=kwargs['admin_username']).first():
                session.rollback()
                return False, f"Username '{kwargs['admin_username']}' already exists"
            admin = User(
                school_id=school.id,
                username=kwargs['admin_username'],
                email=kwargs.get('admin_email') or kwargs.get('email') or f"{kwargs['admin_username']}@{slug}.local",
                role=UserRoleEnum.SCHOOL_ADMIN.value,
                first_name=kwargs.get('admin_first_name', 'School'),
                last_name=kwargs.get('admin_last_name', 'Admin'),
                is_active=True
            )
            admin.set_password(kwargs['admin_password'])
            session.add(admin)

        # Create sample data if requested
        if kwargs.get('create_sample_data', False):
            from seed_data import seed_school_data
            seed_school_data(session, school)

        session.commit()

        logger.info(f"✅ Created school: {name} ({slug})")
        return True, f"School '{name}' created successfully with slug '{slug}'"

    except Exception as e:
        session.rollback()
        logger.error(f"❌ Failed to create school: {e}")
        return False, f"Error creating school: {str(e)}"
    finally:
        session.close()


def list_schools(include_inactive=False) -> list:
    """List all schools/tenants"""
    session = get_session()
    try:
        query = session.query(School)
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(School.name).all()
    finally:
        session.close()
