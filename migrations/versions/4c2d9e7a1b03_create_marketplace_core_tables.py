"""Create marketplace core tables

Revision ID: 4c2d9e7a1b03
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2d9e7a1b03'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('document', sa.String(length=20), nullable=True),
        sa.Column('address_postal_code', sa.String(length=9), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_table('products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('shipping_weight', sa.Numeric(precision=10, scale=3), nullable=True),
        sa.Column('shipping_height', sa.Integer(), nullable=True),
        sa.Column('shipping_width', sa.Integer(), nullable=True),
        sa.Column('shipping_length', sa.Integer(), nullable=True),
        sa.Column('local_pickup', sa.Boolean(), nullable=True),
        sa.Column('free_shipping', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('buyer_id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('seller_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('payment_provider', sa.String(length=50), nullable=True),
        sa.Column('provider_transaction_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_transaction_id')
    )
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.create_index('ix_transactions_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_transactions_buyer_id', ['buyer_id'], unique=False)
        batch_op.create_index('ix_transactions_seller_id', ['seller_id'], unique=False)
        batch_op.create_index('ix_transactions_status', ['status'], unique=False)

    op.create_table('webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_event_id', sa.String(length=255), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_event_id', 'provider', 'event_type', name='uq_webhook_events_event_provider_type')
    )

    op.create_table('shipments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('transaction_id', sa.String(length=36), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('service_id', sa.String(length=20), nullable=True),
        sa.Column('shipping_cost', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('from_address', sa.JSON(), nullable=False),
        sa.Column('to_address', sa.JSON(), nullable=False),
        sa.Column('meeting_details', sa.JSON(), nullable=True),
        sa.Column('package_weight', sa.Numeric(precision=10, scale=3), nullable=True),
        sa.Column('package_height', sa.Integer(), nullable=True),
        sa.Column('package_width', sa.Integer(), nullable=True),
        sa.Column('package_length', sa.Integer(), nullable=True),
        sa.Column('melhor_envio_order_id', sa.String(length=100), nullable=True),
        sa.Column('tracking_code', sa.String(length=100), nullable=True),
        sa.Column('label_url', sa.Text(), nullable=True),
        sa.Column('label_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('tracking_events', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('shipments', schema=None) as batch_op:
        batch_op.create_index('ix_shipments_transaction_id', ['transaction_id'], unique=False)
        batch_op.create_index('ix_shipments_melhor_envio_order_id', ['melhor_envio_order_id'], unique=False)
        batch_op.create_index('ix_shipments_tracking_code', ['tracking_code'], unique=False)
        batch_op.create_index('ix_shipments_status', ['status'], unique=False)

    op.create_table('audit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('actor_user_id', sa.String(length=36), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('entity', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index('ix_audit_events_entity_id', ['entity_id'], unique=False)


def downgrade():
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.drop_index('ix_audit_events_entity_id')
    op.drop_table('audit_events')

    with op.batch_alter_table('shipments', schema=None) as batch_op:
        batch_op.drop_index('ix_shipments_status')
        batch_op.drop_index('ix_shipments_tracking_code')
        batch_op.drop_index('ix_shipments_melhor_envio_order_id')
        batch_op.drop_index('ix_shipments_transaction_id')
    op.drop_table('shipments')

    op.drop_table('webhook_events')

    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.drop_index('ix_transactions_status')
        batch_op.drop_index('ix_transactions_seller_id')
        batch_op.drop_index('ix_transactions_buyer_id')
        batch_op.drop_index('ix_transactions_product_id')
    op.drop_table('transactions')

    op.drop_table('products')
    op.drop_table('users')
