"""Shared fixtures: a small shop schema used across the test suite"""

import pytest

from querycanvas import SchemaCatalog

SHOP_TABLES = [
    {
        "tableName": "orders",
        "columns": [
            {"name": "id", "type": "integer", "primaryKey": True},
            {"name": "customer_id", "type": "integer"},
            {"name": "status", "type": "text"},
            {"name": "price", "type": "numeric"},
            {"name": "created_at", "type": "timestamp"},
        ],
    },
    {
        "tableName": "customers",
        "columns": [
            {"name": "id", "type": "integer", "primaryKey": True},
            {"name": "name", "type": "text"},
            {"name": "email", "type": "text"},
        ],
    },
    {
        "tableName": "products",
        "columns": [
            {"name": "id", "type": "integer", "primaryKey": True},
            {"name": "title", "type": "text"},
        ],
    },
]


@pytest.fixture
def catalog():
    return SchemaCatalog.from_dicts(SHOP_TABLES)


# Columns whose names must be quoted in generated SQL
EVENT_TABLES = [
    {
        "tableName": "events",
        "columns": [
            {"name": "id", "type": "integer", "primaryKey": True},
            {"name": "order", "type": "integer"},
            {"name": "user", "type": "text"},
            {"name": "unit price", "type": "numeric"},
        ],
    },
]


@pytest.fixture
def mixed_catalog():
    return SchemaCatalog.from_dicts(SHOP_TABLES + EVENT_TABLES)
