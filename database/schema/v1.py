"""Schema v1 - Initial bounty board schema.

This version includes tables for:
- Bounty features and their moderation / development lifecycle
- Bounty payments on the fiat rail and the blockchain asset rail
- The monotonic deposit address index counter
"""

BOUNTY_STATUSES = (
    "'pending_review', 'approved', 'rejected', 'taken', "
    "'in_development', 'completed', 'paid'"
)

PAYMENT_STATUSES = "'pending', 'confirmed', 'expired', 'failed'"

PAYMENT_RAILS = "'FIAT', 'DEPIX', 'LBTC', 'USDT'"

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'bounty_features',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'creator_id', 'type': 'INT8', 'nullable': False},
                {'name': 'creator_name', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending_review'",
                 'check': f'status IN ({BOUNTY_STATUSES})'},
                {'name': 'total_fiat', 'type': 'DECIMAL(14,2)', 'nullable': False, 'default': '0'},
                {'name': 'contribution_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'ranking', 'type': 'INT8'},
                {'name': 'developer_id', 'type': 'INT8'},
                {'name': 'developer_name', 'type': 'TEXT'},
                {'name': 'developer_claimed_at', 'type': 'TIMESTAMP'},
                {'name': 'developer_approved_at', 'type': 'TIMESTAMP'},
                {'name': 'reviewed_by', 'type': 'INT8'},
                {'name': 'reviewed_at', 'type': 'TIMESTAMP'},
                {'name': 'review_notes', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_bounty_features_status', 'columns': ['status', 'ranking']},
                {'name': 'idx_bounty_features_creator', 'columns': ['creator_id']}
            ]
        },
        {
            'name': 'bounty_payments',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'bounty_id', 'type': 'INT8', 'nullable': False},
                {'name': 'payer_id', 'type': 'INT8', 'nullable': False},
                {'name': 'payer_name', 'type': 'TEXT'},
                {'name': 'rail', 'type': 'TEXT', 'nullable': False,
                 'check': f'rail IN ({PAYMENT_RAILS})'},
                {'name': 'amount_native', 'type': 'DECIMAL(24,8)', 'nullable': False, 'default': '0'},
                {'name': 'amount_fiat', 'type': 'DECIMAL(14,2)', 'nullable': False, 'default': '0'},
                {'name': 'deposit_address', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'address_index', 'type': 'INT8', 'nullable': False},
                {'name': 'processor_transaction_id', 'type': 'TEXT', 'unique': True},
                {'name': 'merchant_order_id', 'type': 'TEXT'},
                {'name': 'qr_payload', 'type': 'TEXT'},
                {'name': 'qr_image', 'type': 'TEXT'},
                {'name': 'expires_at', 'type': 'TIMESTAMP'},
                {'name': 'onchain_txid', 'type': 'TEXT'},
                {'name': 'onchain_vout', 'type': 'INT8'},
                {'name': 'block_height', 'type': 'INT8'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
                 'check': f'status IN ({PAYMENT_STATUSES})'},
                {'name': 'confirmed_at', 'type': 'TIMESTAMP'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['bounty_id'], 'references': 'bounty_features(id)'}
            ],
            'indexes': [
                {'name': 'idx_bounty_payments_bounty', 'columns': ['bounty_id', 'status']},
                {'name': 'idx_bounty_payments_payer', 'columns': ['payer_id']},
                {'name': 'idx_bounty_payments_address_index', 'columns': ['address_index'], 'unique': True}
            ]
        },
        {
            'name': 'address_index_counters',
            'columns': [
                {'name': 'name', 'type': 'TEXT', 'primary_key': True},
                {'name': 'last_index', 'type': 'INT8', 'nullable': False},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ]
        }
    ],
    'migrations': []
}
