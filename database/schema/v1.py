"""Schema v1 - Initial auction engine schema.

This version includes tables for:
- Auctions and their bids (one bid row per auction and bidder)
- Scheduled settlement jobs (one job per auction)
- Win/loss notifications (one live notification per user and auction)
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'auctions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False, 'default': "''"},
                {'name': 'image_url', 'type': 'TEXT'},
                {'name': 'starting_price', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'end_time', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_auctions_seller_end', 'columns': ['seller_id', 'end_time']},
                {'name': 'idx_auctions_end_time', 'columns': ['end_time']}
            ]
        },
        {
            'name': 'bids',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'auction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'bidder_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['auction_id'], 'references': 'auctions(id) ON DELETE CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_bids_auction_bidder', 'columns': ['auction_id', 'bidder_id'], 'unique': True},
                {'name': 'idx_bids_bidder', 'columns': ['bidder_id']}
            ]
        },
        {
            'name': 'scheduled_jobs',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'auction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'scheduled_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'executed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'error', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['auction_id'], 'references': 'auctions(id) ON DELETE CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_jobs_auction', 'columns': ['auction_id'], 'unique': True},
                {'name': 'idx_jobs_due', 'columns': ['status', 'scheduled_at']}
            ]
        },
        {
            'name': 'notifications',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'auction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'price', 'type': 'DECIMAL(12,2)'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_notifications_user_auction', 'columns': ['user_id', 'auction_id'], 'unique': True},
                {'name': 'idx_notifications_user_created', 'columns': ['user_id', 'created_at']}
            ]
        }
    ],
    'migrations': []
}
