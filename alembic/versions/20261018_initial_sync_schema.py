"""initial_sync_schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18 09:00:00

Adds: catalog_entries, event_reports, sync_state tables
Purpose: Store synced catalog entries and event reports plus the per-source sync ledger
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create sync tables:
    1. catalog_entries - One row per product code, current_status derived from reports
    2. event_reports - Shortage and discontinuation reports (never deleted)
    3. sync_state - One ledger row per upstream source
    """

    op.create_table(
        'catalog_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(20), nullable=False),
        sa.Column('drug_code', sa.Integer(), nullable=True),
        sa.Column('brand_name', sa.String(500), nullable=True),
        sa.Column('brand_name_fr', sa.String(500), nullable=True),
        sa.Column('common_name', sa.String(500), nullable=True),
        sa.Column('common_name_fr', sa.String(500), nullable=True),
        sa.Column('active_ingredient', sa.String(500), nullable=True),
        sa.Column('active_ingredient_fr', sa.String(500), nullable=True),
        sa.Column('strength', sa.String(100), nullable=True),
        sa.Column('strength_unit', sa.String(50), nullable=True),
        sa.Column('number_of_ais', sa.Integer(), nullable=True),
        sa.Column('ai_group_no', sa.String(50), nullable=True),
        sa.Column('dosage_form', sa.String(200), nullable=True),
        sa.Column('dosage_form_fr', sa.String(200), nullable=True),
        sa.Column('route', sa.String(200), nullable=True),
        sa.Column('route_fr', sa.String(200), nullable=True),
        sa.Column('atc_code', sa.String(20), nullable=True),
        sa.Column('atc_description', sa.String(500), nullable=True),
        sa.Column('company', sa.String(500), nullable=True),
        sa.Column('market_status', sa.String(50), nullable=True),
        sa.Column('catalog_last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_status', sa.String(30), server_default='available', nullable=False),
        sa.Column('has_reports', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_code')
    )
    op.create_index('ix_catalog_entries_current_status', 'catalog_entries', ['current_status'])
    op.create_index('ix_catalog_entries_has_reports', 'catalog_entries', ['has_reports'])
    op.create_index('ix_catalog_entries_active_ingredient', 'catalog_entries', ['active_ingredient'])
    op.create_index('ix_catalog_entries_atc_code', 'catalog_entries', ['atc_code'])
    op.create_index('ix_catalog_entries_market_status', 'catalog_entries', ['market_status'])

    op.create_table(
        'event_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('report_id', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(20), nullable=True),
        sa.Column('brand_name', sa.String(500), nullable=True),
        sa.Column('brand_name_fr', sa.String(500), nullable=True),
        sa.Column('common_name', sa.String(500), nullable=True),
        sa.Column('common_name_fr', sa.String(500), nullable=True),
        sa.Column('ingredients', sa.Text(), nullable=True),
        sa.Column('ingredients_fr', sa.Text(), nullable=True),
        sa.Column('drug_strength', sa.String(200), nullable=True),
        sa.Column('dosage_form', sa.String(200), nullable=True),
        sa.Column('dosage_form_fr', sa.String(200), nullable=True),
        sa.Column('route', sa.String(200), nullable=True),
        sa.Column('route_fr', sa.String(200), nullable=True),
        sa.Column('packaging_size', sa.String(200), nullable=True),
        sa.Column('report_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('reason_en', sa.Text(), nullable=True),
        sa.Column('reason_fr', sa.Text(), nullable=True),
        sa.Column('atc_code', sa.String(20), nullable=True),
        sa.Column('atc_description', sa.String(500), nullable=True),
        sa.Column('anticipated_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('anticipated_discontinuation_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('discontinuation_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('company', sa.String(500), nullable=True),
        sa.Column('tier3', sa.Boolean(), nullable=True),
        sa.Column('late_submission', sa.Boolean(), nullable=True),
        sa.Column('decision_reversal', sa.Boolean(), nullable=True),
        sa.Column('api_created_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('api_updated_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id')
    )
    op.create_index('ix_event_reports_product_code', 'event_reports', ['product_code'])
    op.create_index('ix_event_reports_status', 'event_reports', ['status'])
    op.create_index('ix_event_reports_type', 'event_reports', ['report_type'])
    op.create_index('ix_event_reports_api_updated_date', 'event_reports', ['api_updated_date'])
    op.create_index('ix_event_reports_tier3', 'event_reports', ['tier3'])

    op.create_table(
        'sync_state',
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('consecutive_failures', sa.Integer(), server_default='0', nullable=False),
        sa.Column('content_fingerprint', sa.String(100), nullable=True),
        sa.Column('last_full_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('records_seen', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('source')
    )


def downgrade() -> None:
    """Drop sync tables"""
    op.drop_table('sync_state')

    op.drop_index('ix_event_reports_tier3', table_name='event_reports')
    op.drop_index('ix_event_reports_api_updated_date', table_name='event_reports')
    op.drop_index('ix_event_reports_type', table_name='event_reports')
    op.drop_index('ix_event_reports_status', table_name='event_reports')
    op.drop_index('ix_event_reports_product_code', table_name='event_reports')
    op.drop_table('event_reports')

    op.drop_index('ix_catalog_entries_market_status', table_name='catalog_entries')
    op.drop_index('ix_catalog_entries_atc_code', table_name='catalog_entries')
    op.drop_index('ix_catalog_entries_active_ingredient', table_name='catalog_entries')
    op.drop_index('ix_catalog_entries_has_reports', table_name='catalog_entries')
    op.drop_index('ix_catalog_entries_current_status', table_name='catalog_entries')
    op.drop_table('catalog_entries')
