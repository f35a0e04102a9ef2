import random
from pathlib import Path

import pytest
from testsuite.databases.pgsql import discover

from webhook_service.domain.webhooks import RetryConfig
from webhook_service.main import create_app
from webhook_service.services.dependencies import WebhookStores
from webhook_service.settings import settings

from tests.utils import FakeClock, InMemoryDeliveryStore, InMemorySubscriptionStore

pytest_plugins = (
    "testsuite.pytest_plugin",
    "testsuite.databases.pgsql.pytest_plugin",
)

PG_SCHEMAS_PATH = Path(__file__).parent / "schemas" / "postgresql"
CRON_SECRET = "x" * 40


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry_config():
    return RetryConfig(
        max_attempts=8,
        base_delay_seconds=30.0,
        max_delay_seconds=86400.0,
        request_timeout_seconds=0.5,
        dispatch_concurrency=4,
        batch_size=50,
        pass_budget_seconds=30.0,
    )


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def subscription_store():
    return InMemorySubscriptionStore()


@pytest.fixture
def delivery_store(subscription_store):
    return InMemoryDeliveryStore(subscriptions=subscription_store)


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    return CRON_SECRET


@pytest.fixture
async def service_client(aiohttp_client, subscription_store, delivery_store, retry_config, cron_secret):
    """Client for the service API backed by in-memory stores."""
    stores = WebhookStores(subscriptions=subscription_store, deliveries=delivery_store)
    app = create_app(stores=stores, retry_config=retry_config)
    return await aiohttp_client(app)


@pytest.fixture(scope="session")
def pgsql_local(pgsql_local_create):
    databases = discover.find_schemas(
        service_name=None,
        schema_dirs=[PG_SCHEMAS_PATH],
    )
    return pgsql_local_create(list(databases.values()))
