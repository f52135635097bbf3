"""
Shared pytest fixtures for Sprouttie billing tests.
"""

import hashlib
import hmac
import json
import os
import sys
import time

import boto3
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))

WEBHOOK_SECRET = "whsec_test_secret"
STRIPE_API_KEY = "sk_test_123"

PRICE_IDS = {
    ("print", "monthly"): "price_print_monthly",
    ("print", "annual"): "price_print_annual",
    ("pro", "monthly"): "price_pro_monthly",
    ("pro", "annual"): "price_pro_annual",
}


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 resource
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")

    os.environ.setdefault("PROFILES_TABLE", "sprouttie-profiles")
    os.environ.setdefault("BILLING_EVENTS_TABLE", "sprouttie-billing-events")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client singletons between tests."""
    yield
    from shared.aws_clients import reset_clients

    reset_clients()


@pytest.fixture(autouse=True)
def reset_billing_state():
    """Drop cached secrets, catalog and webhook services between tests.

    Each of these lives for the life of a Lambda container, so without a
    reset one test's configuration leaks into the next.
    """
    _reset_billing_caches()
    yield
    _reset_billing_caches()


def _reset_billing_caches():
    from billing.services import reset_services
    from shared.billing_utils import clear_stripe_secrets_cache

    clear_stripe_secrets_cache()
    reset_services()

    import api.stripe_webhook as webhook_module

    webhook_module._services = None
    webhook_module._services_key = None


@pytest.fixture
def stripe_env(monkeypatch):
    """Stripe configured through plain environment variables."""
    monkeypatch.delenv("STRIPE_SECRET_ARN", raising=False)
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET_ARN", raising=False)
    monkeypatch.setenv("STRIPE_SECRET_KEY", STRIPE_API_KEY)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    for (plan, cycle), price_id in PRICE_IDS.items():
        monkeypatch.setenv(f"STRIPE_PRICE_{plan.upper()}_{cycle.upper()}", price_id)


def create_dynamodb_tables(dynamodb):
    """Create the profiles table (with its GSIs) and the event ledger.

    Args:
        dynamodb: boto3 DynamoDB resource
    """
    # Profiles table with identity-resolution GSIs
    dynamodb.create_table(
        TableName="sprouttie-profiles",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},   # user_id
            {"AttributeName": "sk", "KeyType": "RANGE"},  # PROFILE
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "email", "AttributeType": "S"},
            {"AttributeName": "stripe_customer_id", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "email-index",
                "KeySchema": [{"AttributeName": "email", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": "stripe-customer-index",
                "KeySchema": [{"AttributeName": "stripe_customer_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Billing events ledger, one item per Stripe event id
    dynamodb.create_table(
        TableName="sprouttie-billing-events",
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}],  # event_id
        AttributeDefinitions=[{"AttributeName": "pk", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_dynamodb_tables(dynamodb)
        yield dynamodb


@pytest.fixture
def profiles_table(mock_dynamodb):
    return mock_dynamodb.Table("sprouttie-profiles")


@pytest.fixture
def events_table(mock_dynamodb):
    return mock_dynamodb.Table("sprouttie-billing-events")


@pytest.fixture
def seeded_profile(profiles_table):
    """A free-plan user who has signed up but never paid."""
    item = {
        "pk": "user_1",
        "sk": "PROFILE",
        "user_id": "user_1",
        "email": "alice@example.com",
        "plan": "free",
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    profiles_table.put_item(Item=item)
    return item


@pytest.fixture
def price_catalog():
    from billing.plans import PriceCatalog, PriceMapping

    return PriceCatalog(
        {price_id: PriceMapping(plan=plan, billing_cycle=cycle) for (plan, cycle), price_id in PRICE_IDS.items()}
    )


class FakeGateway:
    """Stands in for StripeGateway; records calls and serves canned subscriptions."""

    def __init__(self):
        self.subscriptions = {}
        self.error = None
        self.calls = []

    def get_subscription(self, subscription_id):
        from billing.gateway import SubscriptionSnapshot

        self.calls.append(("get_subscription", subscription_id))
        if self.error:
            raise self.error
        data = self.subscriptions[subscription_id]
        return SubscriptionSnapshot(
            subscription_id=subscription_id,
            status=data.get("status", "active"),
            price_id=data.get("price_id"),
            current_period_end=data.get("current_period_end"),
            cancel_at_period_end=data.get("cancel_at_period_end", False),
        )

    def create_checkout_session(self, **kwargs):
        self.calls.append(("create_checkout_session", kwargs))
        if self.error:
            raise self.error
        return "https://checkout.stripe.com/c/pay/cs_test_123"

    def create_portal_session(self, customer_id, return_url):
        self.calls.append(("create_portal_session", customer_id, return_url))
        if self.error:
            raise self.error
        return "https://billing.stripe.com/p/session/test_123"


class FakeNotifier:
    """Records activation emails instead of sending them."""

    def __init__(self):
        self.sent = []

    def notify(self, plan, email):
        self.sent.append((plan, email))


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def billing_services(mock_dynamodb, price_catalog, fake_gateway, fake_notifier):
    """Reconciler dependencies backed by moto tables and fake collaborators."""
    from billing.idempotency import EventLedger
    from billing.profiles import ProfileStore
    from billing.services import BillingServices

    return BillingServices(
        profiles=ProfileStore(mock_dynamodb.Table("sprouttie-profiles")),
        ledger=EventLedger(mock_dynamodb.Table("sprouttie-billing-events")),
        catalog=price_catalog,
        gateway=fake_gateway,
        notifier=fake_notifier,
    )


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_stripe_event(event_id: str, event_type: str, obj: dict, created: int = 1767225600) -> dict:
    """Minimal Stripe event envelope."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": obj},
    }


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for Lambda handler tests."""
    return {
        "httpMethod": "POST",
        "headers": {},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {
            "requestId": "req-test-123",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }


@pytest.fixture
def signed_webhook(api_gateway_event):
    """Factory for webhook requests carrying a valid Stripe signature."""

    def _build(payload: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> dict:
        body = json.dumps(payload)
        event = dict(api_gateway_event)
        event["headers"] = {"Stripe-Signature": sign_payload(body, secret, timestamp)}
        event["body"] = body
        return event

    return _build
