# backend/tests/conftest.py

import pytest


class MockCursor:
    def __init__(self, documents):
        self.documents = documents

    async def to_list(self, length=None):
        return self.documents[:length] if length else list(self.documents)


class MockCollection:
    """Mock MongoDB collection"""
    def __init__(self, data=None):
        self.data = data or {}
        self.inserted = []
        self.updates = []

    async def find_one(self, query, projection=None):
        item_id = query.get("id")
        if item_id:
            return self.data.get(item_id)
        return None

    def find(self, query, projection=None):
        documents = list(self.data.values()) + self.inserted
        matches = [doc for doc in documents if all(doc.get(k) == v for k, v in query.items())]
        return MockCursor(matches)

    async def insert_many(self, documents):
        self.inserted.extend(documents)

    async def update_one(self, query, update):
        self.updates.append((query, update))
        doc = self.data.get(query.get("id"))
        if doc is not None:
            doc.update(update.get("$set", {}))


class MockDB:
    """Mock MongoDB database"""
    def __init__(self):
        self.operation_contexts = MockCollection({})
        self.operation_line_items = MockCollection({})


@pytest.fixture
def mock_db():
    """Mock MongoDB database"""
    return MockDB()


@pytest.fixture
def bottling_context(mock_db):
    """Open bottling run of 100 L, recorded in gallons"""
    context = {
        "id": "BOT-7",
        "kind": "bottling",
        "total_available": 26.4172,
        "unit": "gal",
        "status": "open",
        "candidate_targets": [
            {"id": "DRY-750", "name": "Dry 750 mL"},
            {"id": "SEMI-500", "name": "Semi-dry 500 mL"},
        ],
    }
    mock_db.operation_contexts.data["BOT-7"] = context
    return context
