"""
Flask CLI commands: database bootstrap, school onboarding and demo fee data
"""

import click
from flask import Flask
from db_single import create_school, list_schools, get_session
from init_db import run_on_startup
from models import User, School, UserRoleEnum
import logging

logger = logging.getLogger(__name__)


def register_cli_commands(app: Flask):
    """Attach the fee service CLI commands to the app"""

    @app.cli.command("setup-db")
    def setup_db_command():
        """Create tables and the default superadmin user"""
        click.echo("🚀 Setting up database...")
        if run_on_startup():
            click.echo("✅ Database setup completed successfully!")
        else:
            click.echo("❌ Database setup failed!")

    @app.cli.command("add-school")
    @click.option("--slug", required=True, help="Short unique school identifier (e.g., greenfield)")
    @click.option("--name", required=True, help="Display name printed on receipts and reports")
    @click.option("--email", help="School contact email")
    @click.option("--sample-data", is_flag=True, help="Create demo years, classes, fee setup and students")
    def add_school_command(slug, name, email, sample_data):
        """Register a school (tenant), optionally with demo fee data"""
        click.echo(f"🏫 Creating school: {name} ({slug})")

        school_data = {'email': email}
        if sample_data:
            school_data['create_sample_data'] = True

        success, message = create_school(slug, name, **school_data)

        if success:
            click.echo(f"✅ {message}")
        else:
            click.echo(f"❌ {message}")

    @app.cli.command("list-schools")
    @click.option("--all", "include_inactive", is_flag=True, help="Include inactive schools")
    def list_schools_command(include_inactive):
        """List schools in the system"""
        schools = list_schools(include_inactive=include_inactive)
        if not schools:
            click.echo("📭 No schools found")
            return

        click.echo("🏫 Schools in system:")
        click.echo("-" * 60)
        for school in schools:
            click.echo(f"  {school.name}")
            click.echo(f"    ID: {school.id}")
            click.echo(f"    Slug: {school.slug}")
            click.echo(f"    Status: {'Active' if school.is_active else 'Inactive'}")
            click.echo("-" * 60)

    @app.cli.command("create-school-admin")
    @click.option("--slug", required=True, help="School slug")
    @click.option("--username", required=True, help="Admin username")
    @click.option("--email", required=True, help="Admin email")
    @click.option("--password", required=True, help="Admin password")
    @click.option("--first-name", default="School", help="First name")
    @click.option("--last-name", default="Admin", help="Last name")
    def create_school_admin_command(slug, username, email, password, first_name, last_name):
        """Create a school_admin login for an existing school"""
        session = get_session()
        try:
            school = session.query(School).filter_by(slug=slug).first()
            if not school:
                click.echo(f"❌ School with slug '{slug}' not found")
                return

            if session.query(User).filter_by(username=username).first():
                click.echo(f"❌ Username '{username}' already exists")
                return

            admin = User(
                school_id=school.id,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=UserRoleEnum.SCHOOL_ADMIN.value,
                is_active=True
            )
            admin.set_password(password)

            session.add(admin)
            session.commit()

            click.echo(f"✅ School admin created for {school.name}")
            click.echo(f"   Username: {username}")

        except Exception as e:
            session.rollback()
            click.echo(f"❌ Failed to create school admin: {e}")
        finally:
            session.close()

    @app.cli.command("create-superadmin")
    @click.option("--username", required=True, help="Superadmin username")
    @click.option("--email", required=True, help="Superadmin email")
    @click.option("--password", required=True, prompt=True, hide_input=True, help="Superadmin password")
    def create_superadmin_command(username, email, password):
        """Create a platform superadmin (not bound to any school)"""
        session = get_session()
        try:
            if session.query(User).filter_by(username=username).first():
                click.echo(f"❌ Username '{username}' already exists")
                return

            user = User(
                school_id=None,
                username=username,
                email=email,
                first_name='Super',
                last_name='Admin',
                role=UserRoleEnum.SUPERADMIN.value,
                is_active=True
            )
            user.set_password(password)
            session.add(user)
            session.commit()
            click.echo(f"✅ Superadmin '{username}' created")

        except Exception as e:
            session.rollback()
            click.echo(f"❌ Failed to create superadmin: {e}")
        finally:
            session.close()

    @app.cli.command("seed-demo")
    @click.option("--slug", required=True, help="School slug to seed demo data for")
    def seed_demo_command(slug):
        """Seed academic years, classes, fee setup and sample students for a school"""
        from seed_data import seed_school_data

        session = get_session()
        try:
            school = session.query(School).filter_by(slug=slug).first()
            if not school:
                click.echo(f"❌ School with slug '{slug}' not found")
                return

            click.echo(f"🌱 Seeding demo data for {school.name}...")
            summary = seed_school_data(session, school)
            session.commit()

            click.echo("✅ Demo data seeded successfully!")
            click.echo(f"   🏷️  Classes: {summary['classes']}")
            click.echo(f"   💰 Fee types: {summary['feeTypes']}")
            click.echo(f"   📋 Fee structures: {summary['feeStructures']}")
            click.echo(f"   🧾 Balances charged: {summary['balancesCreated']}")

        except Exception as e:
            session.rollback()
            click.echo(f"❌ Failed to seed demo data: {e}")
        finally:
            session.close()


# Usage examples for documentation
USAGE_EXAMPLES = """
# Setup database (run once)
flask --app main:create_app setup-db

# Add a new school with demo data
flask --app main:create_app add-school --slug "abc" --name "ABC High School" --sample-data

# Seed demo data for an existing school
flask --app main:create_app seed-demo --slug abc

# Create school admin
flask --app main:create_app create-school-admin --slug "abc" --username "admin" --email "admin@abc.edu" --password "admin123"

# Create another superadmin
flask --app main:create_app create-superadmin --username "ops" --email "ops@example.com"

# List all schools
flask --app main:create_app list-schools --all
"""

if __name__ == "__main__":
    print("School fee service CLI commands")
    print("=" * 60)
    print(USAGE_EXAMPLES)
