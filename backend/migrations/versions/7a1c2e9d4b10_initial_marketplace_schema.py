"""initial marketplace schema

Revision ID: 7a1c2e9d4b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7a1c2e9d4b10'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=False):
    return sa.Column(name, sa.DateTime(), nullable=nullable)


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'seller_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('store_name', sa.String(length=160), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('commission_rate', sa.Float(), nullable=False),
        sa.Column('total_earnings', sa.Float(), nullable=False),
        sa.Column('available_balance', sa.Float(), nullable=False),
        sa.Column('total_withdrawn', sa.Float(), nullable=False),
        sa.Column('total_sales', sa.Integer(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('ix_seller_profiles_user_id', 'seller_profiles', ['user_id'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('seller_profiles.id'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('product_type', sa.String(length=24), nullable=False),
        sa.Column('delivery_type', sa.String(length=16), nullable=False),
        sa.Column('streaming_mode', sa.String(length=24), nullable=True),
        sa.Column('profile_count', sa.Integer(), nullable=True),
        sa.Column('duration_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False),
        sa.Column('sold_count', sa.Integer(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('seller_profiles.id'), nullable=False),
        sa.Column('subtotal', sa.Float(), nullable=False),
        sa.Column('service_fee_fixed', sa.Float(), nullable=False),
        sa.Column('service_fee_percent', sa.Float(), nullable=False),
        sa.Column('service_fee_amount', sa.Float(), nullable=False),
        sa.Column('total_amount', sa.Float(), nullable=False),
        sa.Column('commission_rate', sa.Float(), nullable=False),
        sa.Column('commission_amount', sa.Float(), nullable=False),
        sa.Column('seller_earnings', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('payment_method', sa.String(length=24), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('is_high_value', sa.Boolean(), nullable=False),
        sa.Column('requires_manual_review', sa.Boolean(), nullable=False),
        sa.Column('risk_score', sa.Integer(), nullable=False),
        _ts('delivery_scheduled_at', True),
        _ts('fulfilled_at', True),
        _ts('completed_at', True),
        _ts('cancelled_at', True),
        sa.Column('refunded_amount', sa.Float(), nullable=False),
        sa.Column('reviewed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('reviewed_at', True),
        sa.Column('review_note', sa.String(length=500), nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_delivery_scheduled_at', 'orders', ['delivery_scheduled_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('product_type', sa.String(length=24), nullable=False),
        sa.Column('delivery_type', sa.String(length=16), nullable=False),
        sa.Column('streaming_mode', sa.String(length=24), nullable=True),
        sa.Column('duration_days', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=False),
        sa.Column('total_price', sa.Float(), nullable=False),
        sa.Column('is_delivered', sa.Boolean(), nullable=False),
        _ts('delivered_at', True),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('payment_method', sa.String(length=24), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('external_payment_id', sa.String(length=128), nullable=True),
        sa.Column('provider_reference', sa.String(length=64), nullable=True),
        sa.Column('details_json', sa.Text(), nullable=True),
        _ts('expires_at', True),
        _ts('completed_at', True),
        _ts('created_at'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=True)
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_external_payment_id', 'payments', ['external_payment_id'])
    op.create_index('ix_payments_provider_reference', 'payments', ['provider_reference'])

    op.create_table(
        'gift_card_codes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('code_encrypted', sa.Text(), nullable=False),
        sa.Column('code_hash', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('order_item_id', sa.Integer(), sa.ForeignKey('order_items.id'), nullable=True),
        _ts('sold_at', True),
        _ts('created_at'),
        sa.UniqueConstraint('product_id', 'code_hash', name='uq_gift_card_codes_product_hash'),
    )
    for col in ('product_id', 'code_hash', 'status', 'buyer_id', 'order_item_id'):
        op.create_index(f'ix_gift_card_codes_{col}', 'gift_card_codes', [col])

    op.create_table(
        'streaming_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('credentials_encrypted', sa.Text(), nullable=False),
        sa.Column('credential_hash', sa.String(length=64), nullable=False),
        sa.Column('max_profiles', sa.Integer(), nullable=False),
        sa.Column('sold_profiles', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('order_item_id', sa.Integer(), sa.ForeignKey('order_items.id'), nullable=True),
        _ts('sold_at', True),
        _ts('expires_at', True),
        _ts('created_at'),
    )
    for col in ('product_id', 'credential_hash', 'status', 'buyer_id', 'order_item_id'):
        op.create_index(f'ix_streaming_accounts_{col}', 'streaming_accounts', [col])

    op.create_table(
        'streaming_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('streaming_accounts.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('profile_name', sa.String(length=80), nullable=False),
        sa.Column('pin', sa.String(length=16), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('order_item_id', sa.Integer(), sa.ForeignKey('order_items.id'), nullable=True),
        _ts('sold_at', True),
        _ts('created_at'),
    )
    for col in ('account_id', 'product_id', 'status', 'buyer_id', 'order_item_id'):
        op.create_index(f'ix_streaming_profiles_{col}', 'streaming_profiles', [col])

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('balance', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'], unique=True)

    op.create_table(
        'wallet_deposits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('memo_token', sa.String(length=32), nullable=False),
        sa.Column('coin', sa.String(length=16), nullable=False),
        sa.Column('network', sa.String(length=16), nullable=False),
        sa.Column('address', sa.String(length=128), nullable=True),
        sa.Column('sandbox', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('tx_id', sa.String(length=128), nullable=True, unique=True),
        sa.Column('credited_amount', sa.Float(), nullable=True),
        _ts('expires_at'),
        _ts('completed_at', True),
        _ts('created_at'),
    )
    op.create_index('ix_wallet_deposits_user_id', 'wallet_deposits', ['user_id'])
    op.create_index('ix_wallet_deposits_memo_token', 'wallet_deposits', ['memo_token'], unique=True)
    op.create_index('ix_wallet_deposits_status', 'wallet_deposits', ['status'])

    op.create_table(
        'refund_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('seller_profiles.id'), nullable=False),
        sa.Column('refund_type', sa.String(length=24), nullable=False),
        sa.Column('original_amount', sa.Float(), nullable=False),
        sa.Column('refund_amount', sa.Float(), nullable=False),
        sa.Column('seller_debit', sa.Float(), nullable=False),
        sa.Column('total_days', sa.Integer(), nullable=False),
        sa.Column('used_days', sa.Integer(), nullable=False),
        sa.Column('remaining_days', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        _ts('processed_at', True),
        _ts('created_at'),
    )
    op.create_index('ix_refund_requests_order_id', 'refund_requests', ['order_id'], unique=True)
    op.create_index('ix_refund_requests_buyer_id', 'refund_requests', ['buyer_id'])
    op.create_index('ix_refund_requests_seller_id', 'refund_requests', ['seller_id'])

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('seller_profiles.id'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('method', sa.String(length=24), nullable=False),
        sa.Column('account_info', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('review_note', sa.String(length=500), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('reviewed_at', True),
        _ts('completed_at', True),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('ix_withdrawals_seller_id', 'withdrawals', ['seller_id'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])

    op.create_table(
        'wallet_txns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('wallets.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('txn_type', sa.String(length=24), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('balance_before', sa.Float(), nullable=False),
        sa.Column('balance_after', sa.Float(), nullable=False),
        sa.Column('description', sa.String(length=240), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('refund_id', sa.Integer(), sa.ForeignKey('refund_requests.id'), nullable=True),
        sa.Column('deposit_id', sa.Integer(), sa.ForeignKey('wallet_deposits.id'), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=True),
        _ts('created_at'),
    )
    for col in ('wallet_id', 'user_id', 'order_id', 'refund_id', 'deposit_id'):
        op.create_index(f'ix_wallet_txns_{col}', 'wallet_txns', [col])
    op.create_index('ix_wallet_txns_idempotency_key', 'wallet_txns', ['idempotency_key'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('target_type', sa.String(length=64), nullable=True),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('meta', sa.Text(), nullable=True),
        _ts('created_at'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('channel', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=160), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.String(length=240), nullable=True),
        sa.Column('provider_ref', sa.String(length=120), nullable=True),
        _ts('created_at'),
        _ts('sent_at', True),
        sa.Column('meta', sa.Text(), nullable=True),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_status', 'notifications', ['status'])

    op.create_table(
        'chat_conversations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('seller_profiles.id'), nullable=False),
        _ts('created_at'),
        _ts('last_message_at', True),
        sa.UniqueConstraint('buyer_id', 'seller_id', name='uq_chat_conversations_pair'),
    )
    op.create_index('ix_chat_conversations_buyer_id', 'chat_conversations', ['buyer_id'])
    op.create_index('ix_chat_conversations_seller_id', 'chat_conversations', ['seller_id'])

    op.create_table(
        'chat_messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('chat_conversations.id'), nullable=False),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_system', sa.Boolean(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_chat_messages_conversation_id', 'chat_messages', ['conversation_id'])

    op.create_table(
        'platform_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_fee_fixed', sa.Float(), nullable=False),
        sa.Column('service_fee_percent', sa.Float(), nullable=False),
        sa.Column('default_commission_rate', sa.Float(), nullable=False),
        sa.Column('high_value_threshold', sa.Float(), nullable=False),
        sa.Column('manual_review_threshold', sa.Float(), nullable=False),
        sa.Column('delivery_delay_minutes', sa.Integer(), nullable=False),
        sa.Column('velocity_window_minutes', sa.Integer(), nullable=False),
        sa.Column('velocity_limit', sa.Integer(), nullable=False),
        sa.Column('deposit_expiry_minutes', sa.Integer(), nullable=False),
        sa.Column('crypto_payment_expiry_minutes', sa.Integer(), nullable=False),
        sa.Column('amount_tolerance', sa.Float(), nullable=False),
        sa.Column('lookback_minutes', sa.Integer(), nullable=False),
        sa.Column('refund_window_days', sa.Integer(), nullable=False),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        _ts('updated_at'),
    )

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=160), nullable=False, unique=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('route', sa.String(length=128), nullable=False),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('response_json', sa.Text(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        _ts('created_at'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_idempotency_keys_user_id', 'idempotency_keys', ['user_id'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('event_id', sa.String(length=128), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        _ts('created_at'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event'),
    )


def downgrade():
    for table in (
        'webhook_events',
        'idempotency_keys',
        'platform_settings',
        'chat_messages',
        'chat_conversations',
        'notifications',
        'audit_logs',
        'withdrawals',
        'wallet_txns',
        'refund_requests',
        'wallet_deposits',
        'wallets',
        'streaming_profiles',
        'streaming_accounts',
        'gift_card_codes',
        'payments',
        'order_items',
        'orders',
        'products',
        'seller_profiles',
        'users',
    ):
        op.drop_table(table)
