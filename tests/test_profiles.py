"""
Tests for the profile store.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError


@pytest.fixture
def store(profiles_table):
    from billing.profiles import ProfileStore

    return ProfileStore(profiles_table)


class TestLookups:
    """Tests for GSI lookups."""

    def test_find_by_customer_id(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "PROFILE", "stripe_customer_id": "cus_1"})

        assert store.find_by_customer_id("cus_1")["pk"] == "user_1"
        assert store.find_by_customer_id("cus_unknown") is None
        assert store.find_by_customer_id(None) is None

    def test_find_by_email_exact_then_normalized(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "PROFILE", "email": "alice@example.com"})

        assert store.find_by_email("alice@example.com")["pk"] == "user_1"
        assert store.find_by_email("  Alice@Example.COM ")["pk"] == "user_1"
        assert store.find_by_email("bob@example.com") is None

    def test_find_by_email_prefers_stored_casing(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "PROFILE", "email": "Alice@Example.com"})

        assert store.find_by_email("Alice@Example.com")["pk"] == "user_1"

    def test_ignores_non_profile_items(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "SESSION#abc", "email": "alice@example.com"})

        assert store.find_by_email("alice@example.com") is None

    def test_query_failure_raises_persistence_error(self):
        from billing.errors import PersistenceError
        from billing.profiles import ProfileStore

        table = MagicMock()
        table.query.side_effect = ClientError({"Error": {"Code": "InternalServerError", "Message": "x"}}, "Query")

        with pytest.raises(PersistenceError):
            ProfileStore(table).find_by_customer_id("cus_1")


class TestUpdate:
    """Tests for conditional profile upserts."""

    def test_creates_profile_lazily(self, store, profiles_table):
        assert store.update("user_new", {"plan": "pro", "subscription_status": "active"}) is True

        item = profiles_table.get_item(Key={"pk": "user_new", "sk": "PROFILE"})["Item"]
        assert item["plan"] == "pro"
        assert item["user_id"] == "user_new"
        assert item["created_at"] == item["updated_at"]

    def test_skips_none_values(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "PROFILE", "stripe_customer_id": "cus_1"})

        store.update("user_1", {"plan": "print", "stripe_customer_id": None})

        item = profiles_table.get_item(Key={"pk": "user_1", "sk": "PROFILE"})["Item"]
        assert item["stripe_customer_id"] == "cus_1"
        assert item["plan"] == "print"

    def test_set_if_missing_keeps_existing(self, store, profiles_table):
        profiles_table.put_item(Item={
            "pk": "user_1", "sk": "PROFILE", "current_period_end": 1800000000, "created_at": "2026-01-01",
        })

        store.update("user_1", {"plan": "free"}, set_if_missing={"current_period_end": 1900000000, "email": "a@b.c"})

        item = profiles_table.get_item(Key={"pk": "user_1", "sk": "PROFILE"})["Item"]
        assert item["current_period_end"] == 1800000000
        assert item["email"] == "a@b.c"
        assert item["created_at"] == "2026-01-01"

    def test_condition_failure_returns_false(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "PROFILE", "current_period_end": 200})

        written = store.update(
            "user_1",
            {"current_period_end": 100},
            condition="#cpe <= :cpe",
            condition_names={"#cpe": "current_period_end"},
            condition_values={":cpe": 100},
        )

        assert written is False
        item = profiles_table.get_item(Key={"pk": "user_1", "sk": "PROFILE"})["Item"]
        assert item["current_period_end"] == 200

    def test_other_errors_raise(self):
        from billing.errors import PersistenceError
        from billing.profiles import ProfileStore

        table = MagicMock()
        table.update_item.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "no table"}}, "UpdateItem"
        )

        with pytest.raises(PersistenceError):
            ProfileStore(table).update("user_1", {"plan": "pro"})


class TestSetCustomerId:
    def test_backfills_existing_profile(self, store, profiles_table):
        profiles_table.put_item(Item={"pk": "user_1", "sk": "PROFILE"})

        store.set_customer_id("user_1", "cus_1")

        assert store.find_by_customer_id("cus_1")["pk"] == "user_1"

    def test_does_not_create_missing_profile(self, store, profiles_table):
        store.set_customer_id("user_ghost", "cus_1")

        assert "Item" not in profiles_table.get_item(Key={"pk": "user_ghost", "sk": "PROFILE"})
