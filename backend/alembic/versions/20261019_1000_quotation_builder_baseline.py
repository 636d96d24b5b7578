"""Quotation builder baseline

Creates the complete schema:
- users
- space_types, component_types, component_variants, quotation_cost_items
- quotations (unique on quotation_number + version)
- quotation_spaces, quotation_components, quotation_line_items
- quotation_activities

Tables are skipped when they already exist from the create_all fallback in main.py.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(table_name):
    """Check if a table exists in the database."""
    return sa.inspect(op.get_bind()).has_table(table_name)


def _id():
    return sa.Column('id', sa.String(36), primary_key=True)


def _tenant_id(nullable=True):
    return sa.Column('tenant_id', sa.String(36), nullable=nullable, index=True)


def upgrade() -> None:
    if not _table_exists('users'):
        op.create_table(
            'users',
            _id(),
            _tenant_id(),
            sa.Column('email', sa.String(), nullable=False, unique=True),
            sa.Column('name', sa.String(), nullable=True),
            sa.Column('avatar_url', sa.String(), nullable=True),
            sa.Column('status', sa.String(), nullable=False, server_default='active'),
            sa.Column('is_super_admin', sa.Boolean(), server_default=sa.false()),
            sa.Column('api_token_hash', sa.String(64), nullable=True, unique=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )

    # Master data
    for table_name in ('space_types', 'component_types'):
        if not _table_exists(table_name):
            op.create_table(
                table_name,
                _id(),
                _tenant_id(),
                sa.Column('name', sa.String(), nullable=False),
                sa.Column('slug', sa.String(), nullable=False),
                sa.Column('icon', sa.String(), nullable=True),
                sa.Column('display_order', sa.Integer(), server_default='0'),
                sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
            )

    if not _table_exists('component_variants'):
        op.create_table(
            'component_variants',
            _id(),
            _tenant_id(),
            sa.Column('component_type_id', sa.String(36),
                      sa.ForeignKey('component_types.id', ondelete='CASCADE'), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('slug', sa.String(), nullable=False),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('display_order', sa.Integer(), server_default='0'),
            sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        )

    if not _table_exists('quotation_cost_items'):
        op.create_table(
            'quotation_cost_items',
            _id(),
            _tenant_id(),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('slug', sa.String(), nullable=False),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('unit_code', sa.String(), nullable=True),
            sa.Column('default_rate', sa.Float(), server_default='0'),
            sa.Column('company_cost', sa.Float(), nullable=True),
            sa.Column('vendor_cost', sa.Float(), nullable=True),
            sa.Column('display_order', sa.Integer(), server_default='0'),
            sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        )

    if not _table_exists('quotations'):
        op.create_table(
            'quotations',
            _id(),
            _tenant_id(nullable=False),
            sa.Column('quotation_number', sa.String(), nullable=False, index=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('parent_quotation_id', sa.String(36),
                      sa.ForeignKey('quotations.id', ondelete='SET NULL'), nullable=True),
            sa.Column('status', sa.String(), nullable=False, server_default='draft'),
            sa.Column('lead_id', sa.String(36), nullable=True, index=True),
            sa.Column('project_id', sa.String(36), nullable=True),
            sa.Column('client_id', sa.String(36), nullable=True),
            sa.Column('template_id', sa.String(36), nullable=True),
            sa.Column('title', sa.String(), nullable=True),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('valid_from', sa.DateTime(), nullable=True),
            sa.Column('valid_until', sa.DateTime(), nullable=True),
            sa.Column('subtotal', sa.Float(), server_default='0'),
            sa.Column('discount_type', sa.String(), nullable=True),
            sa.Column('discount_value', sa.Float(), server_default='0'),
            sa.Column('discount_amount', sa.Float(), server_default='0'),
            sa.Column('taxable_amount', sa.Float(), server_default='0'),
            sa.Column('tax_percent', sa.Float(), server_default='18'),
            sa.Column('tax_amount', sa.Float(), server_default='0'),
            sa.Column('overhead_percent', sa.Float(), server_default='0'),
            sa.Column('overhead_amount', sa.Float(), server_default='0'),
            sa.Column('grand_total', sa.Float(), server_default='0'),
            sa.Column('payment_terms', sa.String(), nullable=True),
            sa.Column('terms_and_conditions', sa.String(), nullable=True),
            sa.Column('notes', sa.String(), nullable=True),
            sa.Column('presentation_level', sa.String(), nullable=True),
            sa.Column('hide_dimensions', sa.Boolean(), server_default=sa.false()),
            sa.Column('assigned_to', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('created_by', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('updated_by', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.Column('sent_at', sa.DateTime(), nullable=True),
            sa.Column('approved_at', sa.DateTime(), nullable=True),
            sa.Column('rejected_at', sa.DateTime(), nullable=True),
            sa.Column('rejection_reason', sa.String(), nullable=True),
            sa.Column('client_access_token', sa.String(64), nullable=True, unique=True),
            sa.Column('client_access_expires_at', sa.DateTime(), nullable=True),
            sa.Column('client_view_count', sa.Integer(), server_default='0'),
            sa.Column('last_client_view_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint('quotation_number', 'version', name='uq_quotation_number_version'),
        )

    if not _table_exists('quotation_spaces'):
        op.create_table(
            'quotation_spaces',
            _id(),
            sa.Column('quotation_id', sa.String(36),
                      sa.ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('space_type_id', sa.String(36), sa.ForeignKey('space_types.id'), nullable=True),
            sa.Column('name', sa.String(), nullable=True),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('subtotal', sa.Float(), server_default='0'),
            sa.Column('display_order', sa.Integer(), server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )

    if not _table_exists('quotation_components'):
        op.create_table(
            'quotation_components',
            _id(),
            sa.Column('quotation_id', sa.String(36),
                      sa.ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('space_id', sa.String(36),
                      sa.ForeignKey('quotation_spaces.id', ondelete='CASCADE'), nullable=True),
            sa.Column('component_type_id', sa.String(36), sa.ForeignKey('component_types.id'), nullable=True),
            sa.Column('component_variant_id', sa.String(36), sa.ForeignKey('component_variants.id'), nullable=True),
            sa.Column('name', sa.String(), nullable=True),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('subtotal', sa.Float(), server_default='0'),
            sa.Column('display_order', sa.Integer(), server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )

    if not _table_exists('quotation_line_items'):
        op.create_table(
            'quotation_line_items',
            _id(),
            sa.Column('quotation_id', sa.String(36),
                      sa.ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('quotation_space_id', sa.String(36),
                      sa.ForeignKey('quotation_spaces.id', ondelete='SET NULL'), nullable=True),
            sa.Column('quotation_component_id', sa.String(36),
                      sa.ForeignKey('quotation_components.id', ondelete='SET NULL'), nullable=True),
            sa.Column('quotation_cost_item_id', sa.String(36),
                      sa.ForeignKey('quotation_cost_items.id'), nullable=True),
            sa.Column('name', sa.String(), nullable=True),
            sa.Column('length', sa.Float(), nullable=True),
            sa.Column('width', sa.Float(), nullable=True),
            sa.Column('quantity', sa.Float(), server_default='1'),
            sa.Column('unit_code', sa.String(), nullable=True),
            sa.Column('rate', sa.Float(), server_default='0'),
            sa.Column('amount', sa.Float(), server_default='0'),
            sa.Column('measurement_unit', sa.String(), server_default='mm'),
            sa.Column('display_order', sa.Integer(), server_default='0'),
            sa.Column('notes', sa.String(), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )

    if not _table_exists('quotation_activities'):
        op.create_table(
            'quotation_activities',
            _id(),
            sa.Column('quotation_id', sa.String(36),
                      sa.ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('activity_type', sa.String(), nullable=False),
            sa.Column('title', sa.String(), nullable=False),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('performed_by', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('ip_address', sa.String(), nullable=True),
            sa.Column('user_agent', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )


def downgrade() -> None:
    """Drop everything, children first."""
    for table_name in (
        'quotation_activities',
        'quotation_line_items',
        'quotation_components',
        'quotation_spaces',
        'quotations',
        'quotation_cost_items',
        'component_variants',
        'component_types',
        'space_types',
        'users',
    ):
        op.drop_table(table_name)
