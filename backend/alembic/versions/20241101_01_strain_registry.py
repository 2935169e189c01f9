"""strain registry tables with partial unique indexes

Revision ID: 20241101_01
Revises:
Create Date: 2024-11-01 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '20241101_01'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_ROWS = sa.text("deleted_at IS NULL")


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='researcher'),
        sa.Column('biosafety_clearance', sa.Integer(), nullable=True),
        sa.Column('lab_affiliation', sa.String(255)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            'biosafety_clearance IS NULL OR biosafety_clearance BETWEEN 1 AND 4',
            name='ck_users_clearance_range',
        ),
    )
    op.create_index(
        'uq_users_email_active',
        'users',
        ['email'],
        unique=True,
        postgresql_where=ACTIVE_ROWS,
        sqlite_where=ACTIVE_ROWS,
    )

    op.create_table(
        'strains',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('strain_code', sa.String(50), nullable=False),
        sa.Column('microorganism_type', sa.String(20), nullable=False),
        sa.Column('genus_species', sa.String(255)),
        sa.Column('genus', sa.String(100)),
        sa.Column('species', sa.String(100)),
        sa.Column('sample_type', sa.String(100)),
        sa.Column('origin_location', sa.String(255)),
        sa.Column('isolation_date', sa.Date()),
        sa.Column('characteristics_macroscopic', sa.Text()),
        sa.Column('characteristics_microscopic', sa.Text()),
        sa.Column('characteristics_biochemical', sa.Text()),
        *[
            sa.Column(f'potential_{flag}', sa.Boolean(), nullable=False, server_default=sa.false())
            for flag in (
                'nitrogen_fixer',
                'phosphate_solubilizer',
                'proteolytic',
                'lipolytic',
                'amylolytic',
                'cellulolytic',
                'antimicrobial',
                'iaa_hormone',
            )
        ],
        sa.Column('storage_technique', sa.String(100)),
        sa.Column('culture_stock', sa.String(100)),
        sa.Column('storage_location', sa.String(100)),
        sa.Column('biosafety_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('biosafety_level BETWEEN 1 AND 4', name='ck_strains_biosafety_range'),
    )
    op.create_index(
        'uq_strains_code_active',
        'strains',
        ['strain_code'],
        unique=True,
        postgresql_where=ACTIVE_ROWS,
        sqlite_where=ACTIVE_ROWS,
    )
    op.create_index('ix_strains_biosafety_level', 'strains', ['biosafety_level'])

    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True)),
        sa.Column('ip_address', sa.String(45)),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource_type', 'resource_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    op.drop_index('ix_audit_logs_created_at', table_name='audit_logs')
    op.drop_index('ix_audit_logs_resource', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_strains_biosafety_level', table_name='strains')
    op.drop_index('uq_strains_code_active', table_name='strains')
    op.drop_table('strains')
    op.drop_index('uq_users_email_active', table_name='users')
    op.drop_table('users')
