"""
Database Initialization and Integrity Checker
Runs on startup to ensure all tables and the default superadmin exist
"""

import sys
import logging
from datetime import datetime
from sqlalchemy import inspect

from config import Config
import db_single
from models import Base, User, UserRoleEnum

logger = logging.getLogger(__name__)


def get_existing_tables(engine):
    """Get list of existing tables in database"""
    return set(inspect(engine).get_table_names())


def get_expected_tables():
    """Get list of tables defined in models"""
    import fee_models  # noqa: F401
    return set(Base.metadata.tables.keys())


def create_default_admin_user(config=None):
    """Create default superadmin user if no users exist"""
    config = config or Config()
    session = db_single.get_session()

    try:
        if session.query(User).count() == 0:
            admin = User(
                username=config.DEFAULT_SUPERADMIN_USERNAME,
                email=config.DEFAULT_SUPERADMIN_EMAIL,
                role=UserRoleEnum.SUPERADMIN.value,
                first_name='Super',
                last_name='Admin',
                is_active=True
            )
            admin.set_password(config.DEFAULT_SUPERADMIN_PASSWORD)

            session.add(admin)
            session.commit()

            logger.warning(
                f"Created default superadmin '{config.DEFAULT_SUPERADMIN_USERNAME}'. "
                "Change this password immediately in production!"
            )
            return True
        return False
    except Exception as e:
        session.rollback()
        logger.error(f"Could not create default admin user: {e}")
        return False
    finally:
        session.close()


def initialize_database(config=None, create_admin=True):
    """
    Create missing tables and the default superadmin
    Returns: (success: bool, created_tables: list)
    """
    config = config or Config()
    logger.info(f"Database initialization started at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        if db_single.ENGINE is None:
            db_single.init_database(config=config)
        engine = db_single.ENGINE

        existing_tables = get_existing_tables(engine)
        expected_tables = get_expected_tables()
        missing = sorted(expected_tables - existing_tables)

        db_single.create_tables()
        if missing:
            logger.info(f"Created {len(missing)} tables: {', '.join(missing)}")
        else:
            logger.info("Database integrity verified - all tables present")

        if create_admin:
            create_default_admin_user(config)

        return True, missing

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        return False, []


def run_on_startup(config=None):
    """Wrapper function to run on application startup"""
    success, _ = initialize_database(config)

    if not success:
        logger.warning("Database initialization failed! The application may not work correctly.")
        return False

    return True


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    success = run_on_startup()
    sys.exit(0 if success else 1)
