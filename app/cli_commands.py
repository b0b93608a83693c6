"""
Flask CLI commands for storefront operations.

Commands:
- flask init-db: Create missing tables and indexes (run before serving traffic)
- flask create-owner: Create a storefront and its owner account
- flask refresh-discounts: Persist schedule-derived discount flags
"""

import click
import re
from sqlalchemy import func
from app.database import get_session, migrate_schema
from app.models import AppUser, Tenant, UserTenant, UserRole
from app.services.discount_service import refresh_active_flags


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Migrate the schema (idempotent)."""
        migrate_schema()
        click.echo(click.style('✅ Schema siap.', fg='green'))

    @app.cli.command('create-owner')
    @click.option('--slug', prompt=True, help='Storefront slug')
    @click.option('--name', prompt=True, help='Storefront display name')
    @click.option('--email', prompt=True, help='Owner email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Owner password')
    def create_owner(slug, name, email, password):
        """Create a storefront (if missing) and attach an OWNER account."""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            raise click.BadParameter('Email tidak valid', param_hint='--email')
        if len(password) < 6:
            raise click.BadParameter('Password minimal 6 karakter', param_hint='--password')

        db_session = get_session()
        try:
            tenant = db_session.query(Tenant).filter_by(slug=slug).first()
            if not tenant:
                tenant = Tenant(slug=slug, name=name)
                db_session.add(tenant)
                db_session.flush()

            user = db_session.query(AppUser).filter(func.lower(AppUser.email) == email.lower()).first()
            if not user:
                user = AppUser(email=email.lower(), full_name=name)
                user.set_password(password)
                db_session.add(user)
                db_session.flush()

            membership = db_session.query(UserTenant).filter_by(user_id=user.id, tenant_id=tenant.id).first()
            if membership:
                membership.role = UserRole.OWNER.value
                membership.active = True
            else:
                db_session.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=UserRole.OWNER.value))
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

        click.echo(click.style('\n✅ Owner siap!', fg='green', bold=True))
        click.echo(f'   Toko: {tenant.slug} (ID {tenant.id})')
        click.echo(f'   Email: {user.email}')

    @app.cli.command('refresh-discounts')
    @click.option('--tenant-id', type=int, default=None, help='Only this storefront')
    def refresh_discounts(tenant_id):
        """Recompute is_active_now for scheduled discounts."""
        changed = refresh_active_flags(get_session(), tenant_id=tenant_id)
        click.echo(f'{changed} diskon diperbarui')
