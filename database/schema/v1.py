"""Schema v1 - Initial database schema.

Describes the tables and remote procedures the hosted backend exposes, so a
plain Postgres can stand in for it during development. This version includes:
- Profiles (display data for listing owners)
- Listings with their attribute bag, images and analytics counters
- Favorites
- Conversations and messages
- increment_listing_counter and search_listings procedures
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'profiles',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'phone', 'type': 'TEXT'},
                {'name': 'avatar_url', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'price', 'type': 'NUMERIC(12, 2)'},
                {'name': 'category_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'type', 'type': 'TEXT'},
                {'name': 'city', 'type': 'TEXT'},
                {'name': 'state', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'draft'"},
                {'name': 'owner_id', 'type': 'UUID', 'nullable': False},
                {'name': 'attributes', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
                {'name': 'images', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'analytics', 'type': 'JSONB', 'default': "'{}'::jsonb"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_listings_owner', 'columns': ['owner_id']},
                {'name': 'idx_listings_category', 'columns': ['category_id', 'city']},
                {'name': 'idx_listings_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'favorites',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id) ON DELETE CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_favorites_user_listing', 'columns': ['user_id', 'listing_id'], 'unique': True}
            ]
        },
        {
            'name': 'conversations',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'buyer_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id) ON DELETE CASCADE'}
            ],
            'indexes': [
                # One thread per buyer per listing
                {'name': 'idx_conversations_listing_buyer', 'columns': ['listing_id', 'buyer_id'], 'unique': True},
                {'name': 'idx_conversations_seller', 'columns': ['seller_id']}
            ]
        },
        {
            'name': 'messages',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'conversation_id', 'type': 'UUID', 'nullable': False},
                {'name': 'sender_id', 'type': 'UUID', 'nullable': False},
                {'name': 'body', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'clock_timestamp()'},
                {'name': 'read_at', 'type': 'TIMESTAMPTZ'}
            ],
            'foreign_keys': [
                {'columns': ['conversation_id'], 'references': 'conversations(id) ON DELETE CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_messages_conversation', 'columns': ['conversation_id', 'created_at']}
            ]
        }
    ],
    'triggers': [
        {
            'name': 'messages_sender_is_participant',
            'table': 'messages',
            'timing': 'BEFORE',
            'event': 'INSERT',
            'function_name': 'check_message_sender',
            'function_body': '''
                BEGIN
                    IF NOT EXISTS (
                        SELECT 1 FROM conversations c
                        WHERE c.id = NEW.conversation_id
                        AND NEW.sender_id IN (c.buyer_id, c.seller_id)
                    ) THEN
                        RAISE EXCEPTION 'sender % is not a participant of conversation %',
                            NEW.sender_id, NEW.conversation_id
                            USING ERRCODE = 'insufficient_privilege';
                    END IF;
                    RETURN NEW;
                END;
            '''
        }
    ],
    'functions': [
        {
            'name': 'increment_listing_counter',
            'definition': '''
                CREATE OR REPLACE FUNCTION increment_listing_counter(listing_id UUID, counter_type TEXT)
                RETURNS INT8
                AS $$
                DECLARE
                    counter_key TEXT;
                    new_value INT8;
                BEGIN
                    counter_key := CASE counter_type
                        WHEN 'view' THEN 'views'
                        WHEN 'whatsapp' THEN 'whatsapp_clicks'
                        WHEN 'email' THEN 'email_clicks'
                    END;
                    IF counter_key IS NULL THEN
                        RAISE EXCEPTION 'unknown counter type: %', counter_type;
                    END IF;

                    UPDATE listings l
                    SET analytics = jsonb_set(
                        COALESCE(l.analytics, '{}'::jsonb),
                        ARRAY[counter_key],
                        to_jsonb(COALESCE((l.analytics ->> counter_key)::INT8, 0) + 1)
                    )
                    WHERE l.id = increment_listing_counter.listing_id
                    RETURNING (l.analytics ->> counter_key)::INT8 INTO new_value;

                    RETURN new_value;
                END;
                $$ LANGUAGE plpgsql;
            '''
        },
        {
            'name': 'search_listings',
            'definition': '''
                CREATE OR REPLACE FUNCTION search_listings(
                    p_category_id TEXT,
                    p_city TEXT,
                    p_price_min NUMERIC,
                    p_price_max NUMERIC,
                    p_attrs JSONB
                )
                RETURNS SETOF listings
                AS $$
                    SELECT *
                    FROM listings l
                    WHERE l.status = 'active'
                    AND (p_category_id IS NULL OR l.category_id = p_category_id)
                    AND (p_city IS NULL OR l.city ILIKE p_city)
                    AND (p_price_min IS NULL OR l.price >= p_price_min)
                    AND (p_price_max IS NULL OR l.price <= p_price_max)
                    AND (p_attrs IS NULL OR l.attributes @> p_attrs)
                    ORDER BY l.created_at DESC
                $$ LANGUAGE sql STABLE;
            '''
        }
    ]
}
