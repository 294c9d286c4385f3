"""Initial bakery storefront schema

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers used by Alembic
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUS = sa.Enum('pending', 'pending_payment', 'processing', 'shipped', 'delivered', 'cancelled',
                       name='orderstatus')
PAYMENT_METHOD = sa.Enum('cash', 'gcash', name='paymentmethod')
DELIVERY_METHOD = sa.Enum('pickup', 'delivery', name='deliverymethod')
CAKE_STATUS = sa.Enum('Pending Review', 'Feasible', 'Not Feasible', 'Ready for Downpayment', 'Downpayment Paid',
                      'In Progress', 'Ready for Pickup/Delivery', 'Completed', 'Cancelled', name='cakestatus')
CAKE_PAYMENT_STATUS = sa.Enum('pending', 'paid', 'failed', name='cakepaymentstatus')
FINAL_PAYMENT_STATUS = sa.Enum('pending', 'paid', name='finalpaymentstatus')
INTENT_PURPOSE = sa.Enum('order', 'downpayment', 'balance', name='intentpurpose')
INTENT_TARGET = sa.Enum('order', 'custom_cake', 'image_order', name='intenttarget')
INTENT_STATUS = sa.Enum('pending', 'paid', 'failed', 'expired', name='intentstatus')
MOVEMENT_TYPE = sa.Enum('DEBIT', 'CREDIT', 'ADJUSTMENT', name='movementtype')

BALANCE_CHECK = (
    "price IS NULL OR "
    "(downpayment_amount IS NOT NULL AND remaining_balance IS NOT NULL "
    "AND downpayment_amount + remaining_balance = price)"
)


def _cake_columns(shared_types=False):
    # Shared status, pricing and payment columns of both custom-cake tables.
    # The second table reuses the Postgres enum types created by the first.
    def _enum(enum_type):
        if not shared_types:
            return enum_type
        return postgresql.ENUM(*enum_type.enums, name=enum_type.name, create_type=False)

    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', _enum(CAKE_STATUS), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('downpayment_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('remaining_balance', sa.Numeric(10, 2), nullable=True),
        sa.Column('payment_status', _enum(CAKE_PAYMENT_STATUS), nullable=False),
        sa.Column('is_downpayment_paid', sa.Boolean(), nullable=False),
        sa.Column('downpayment_paid_at', sa.DateTime(), nullable=True),
        sa.Column('final_payment_status', _enum(FINAL_PAYMENT_STATUS), nullable=False),
        sa.Column('delivery_method', sa.String(), nullable=False),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('delivery_date', sa.DateTime(), nullable=True),
        sa.Column('slot_available', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_by', sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'menu_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('image_url', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('has_sizes', sa.Boolean(), nullable=False),
        sa.Column('base_price', sa.Numeric(10, 2), sa.CheckConstraint('base_price >= 0'), nullable=False),
        sa.Column('stock', sa.Integer(), sa.CheckConstraint('stock >= 0'), nullable=False),
    )
    op.create_index('ix_menu_items_id', 'menu_items', ['id'])
    op.create_index('ix_menu_items_name', 'menu_items', ['name'])

    op.create_table(
        'item_sizes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('menu_item_id', sa.Integer(), sa.ForeignKey('menu_items.id'), nullable=False),
        sa.Column('size_name', sa.String(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), sa.CheckConstraint('price >= 0'), nullable=False),
        sa.Column('stock', sa.Integer(), sa.CheckConstraint('stock >= 0'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_item_sizes_id', 'item_sizes', ['id'])
    op.create_index('ix_item_sizes_menu_item_id', 'item_sizes', ['menu_item_id'])

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_carts_id', 'carts', ['id'])
    op.create_index('ix_carts_user_id', 'carts', ['user_id'], unique=True)

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cart_id', sa.Integer(), sa.ForeignKey('carts.id'), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), sa.ForeignKey('menu_items.id'), nullable=False),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('item_sizes.id'), nullable=True),
        sa.Column('qty', sa.Integer(), sa.CheckConstraint('qty >= 1'), nullable=False),
        sa.Column('unit_price_snapshot', sa.Numeric(10, 2), nullable=False),
        sa.UniqueConstraint('cart_id', 'menu_item_id', 'size_id', name='uq_cartitem_cart_item_size'),
    )
    op.create_index('ix_cart_items_id', 'cart_items', ['id'])
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'])
    op.create_index('ix_cart_items_menu_item_id', 'cart_items', ['menu_item_id'])
    op.create_index('ix_cart_items_size_id', 'cart_items', ['size_id'])

    op.create_table(
        'custom_cake_orders',
        *_cake_columns(),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('customer_phone', sa.String(), nullable=True),
        sa.Column('size', sa.String(), nullable=False),
        sa.Column('cake_color', sa.String(), nullable=False),
        sa.Column('icing_style', sa.String(), nullable=False),
        sa.Column('icing_color', sa.String(), nullable=False),
        sa.Column('filling', sa.String(), nullable=False),
        sa.Column('bottom_border', sa.String(), nullable=False),
        sa.Column('top_border', sa.String(), nullable=False),
        sa.Column('bottom_border_color', sa.String(), nullable=True),
        sa.Column('top_border_color', sa.String(), nullable=True),
        sa.Column('decorations', sa.String(), nullable=False),
        sa.Column('flower_type', sa.String(), nullable=False),
        sa.Column('message_choice', sa.String(), nullable=False),
        sa.Column('custom_text', sa.String(), nullable=True),
        sa.Column('toppings_color', sa.String(), nullable=True),
        sa.Column('reference_image_url', sa.String(), nullable=True),
        sa.Column('design_image_url', sa.String(), nullable=True),
        sa.CheckConstraint(BALANCE_CHECK, name='ck_custom_cake_balance'),
        sa.CheckConstraint('slot_available >= 0 AND slot_available <= 1', name='ck_custom_cake_slot'),
    )
    op.create_index('ix_custom_cake_orders_id', 'custom_cake_orders', ['id'])
    op.create_index('ix_custom_cake_orders_user_id', 'custom_cake_orders', ['user_id'])
    op.create_index('ix_custom_cake_orders_status', 'custom_cake_orders', ['status'])

    op.create_table(
        'image_based_orders',
        *_cake_columns(shared_types=True),
        sa.Column('image_path', sa.String(), nullable=False),
        sa.Column('flavor', sa.String(), nullable=False),
        sa.Column('size', sa.String(), nullable=True),
        sa.Column('message', sa.String(), nullable=True),
        sa.Column('event_date', sa.DateTime(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint(BALANCE_CHECK, name='ck_image_order_balance'),
        sa.CheckConstraint('slot_available >= 0 AND slot_available <= 1', name='ck_image_order_slot'),
    )
    op.create_index('ix_image_based_orders_id', 'image_based_orders', ['id'])
    op.create_index('ix_image_based_orders_user_id', 'image_based_orders', ['user_id'])
    op.create_index('ix_image_based_orders_status', 'image_based_orders', ['status'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', ORDER_STATUS, nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), sa.CheckConstraint('total_amount >= 0'), nullable=False),
        sa.Column('payment_method', PAYMENT_METHOD, nullable=False),
        sa.Column('payment_verified', sa.Boolean(), nullable=False),
        sa.Column('stock_committed', sa.Boolean(), nullable=False),
        sa.Column('delivery_method', DELIVERY_METHOD, nullable=False),
        sa.Column('delivery_address', sa.String(), nullable=True),
        sa.Column('scheduled_date', sa.Date(), nullable=True),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('customer_phone', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), sa.ForeignKey('menu_items.id'), nullable=True),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('item_sizes.id'), nullable=True),
        sa.Column('custom_cake_id', sa.Integer(), sa.ForeignKey('custom_cake_orders.id'), nullable=True),
        sa.Column('image_order_id', sa.Integer(), sa.ForeignKey('image_based_orders.id'), nullable=True),
        sa.Column('item_name', sa.String(), nullable=False),
        sa.Column('size_name', sa.String(), nullable=True),
        sa.Column('qty', sa.Integer(), sa.CheckConstraint('qty >= 1'), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), sa.CheckConstraint('unit_price >= 0'), nullable=False),
        sa.Column('line_total', sa.Numeric(10, 2), nullable=False),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_menu_item_id', 'order_items', ['menu_item_id'])

    op.create_table(
        'payment_intents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('checkout_url', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('purpose', INTENT_PURPOSE, nullable=False),
        sa.Column('target_type', INTENT_TARGET, nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', INTENT_STATUS, nullable=False),
        sa.Column('refund_required', sa.Boolean(), nullable=False),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('snapshot', sa.JSON(), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('settled_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payment_intents_id', 'payment_intents', ['id'])
    op.create_index('ix_payment_intents_external_id', 'payment_intents', ['external_id'], unique=True)
    op.create_index('ix_payment_intents_token', 'payment_intents', ['token'], unique=True)
    op.create_index('ix_payment_intents_user_id', 'payment_intents', ['user_id'])
    op.create_index('ix_payment_intents_status', 'payment_intents', ['status'])
    op.create_index('ix_payment_intents_order_id', 'payment_intents', ['order_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('menu_item_id', sa.Integer(), sa.ForeignKey('menu_items.id'), nullable=True),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('item_sizes.id'), nullable=True),
        sa.Column('custom_cake_id', sa.Integer(), sa.ForeignKey('custom_cake_orders.id'), nullable=True),
        sa.Column('image_order_id', sa.Integer(), sa.ForeignKey('image_based_orders.id'), nullable=True),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('type', MOVEMENT_TYPE, nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('balance_after', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_stock_movements_id', 'stock_movements', ['id'])
    op.create_index('ix_stock_movements_menu_item_id', 'stock_movements', ['menu_item_id'])
    op.create_index('ix_stock_movements_size_id', 'stock_movements', ['size_id'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ts', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', sa.String(50)),
        sa.Column('resource', sa.String(50)),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20)),
        sa.Column('ip', sa.String(64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_ts', 'audit_logs', ['ts'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_status', 'audit_logs', ['status'])


def downgrade() -> None:
    """Downgrade schema."""
    for table in ('audit_logs', 'stock_movements', 'payment_intents', 'order_items', 'orders',
                  'image_based_orders', 'custom_cake_orders', 'cart_items', 'carts', 'item_sizes',
                  'menu_items', 'users'):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (MOVEMENT_TYPE, INTENT_STATUS, INTENT_TARGET, INTENT_PURPOSE, FINAL_PAYMENT_STATUS,
                      CAKE_PAYMENT_STATUS, CAKE_STATUS, DELIVERY_METHOD, PAYMENT_METHOD, ORDER_STATUS):
        enum_type.drop(bind, checkfirst=True)
