import json
from unittest.mock import Mock

import pytest

from payconnect.config import Settings
from payconnect.core.stores import DuplicateSuppressionWindow, PendingTransactionStore

TEST_ENV = {
    "MOOLRE_BASE": "https://moolre.test",
    "MOOLRE_PUBLIC_API_KEY": "pub_test",
    "MOOLRE_USERNAME": "payconnect",
    "MOOLRE_SECRET": "whsec_test",
    "MOOLRE_ACCOUNT_NUMBER": "10001000",
    "HUBTEL_CLIENT_ID": "hubtel_id",
    "HUBTEL_CLIENT_SECRET": "hubtel_secret",
    "HUBTEL_SENDER": "Pconnect",
    "AIRTABLE_API_KEY": "pat_test",
    "AIRTABLE_BASE": "appTEST",
    "AIRTABLE_TABLE": "Orders",
    "PUBLIC_BASE_URL": "https://payconnect.test",
}


class FakeClock:
    """Monotonic clock the tests can move forward by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def mock_http_response(json_data, status_code: int = 200) -> Mock:
    """Mock requests.Response whose .json() returns json_data."""
    resp = Mock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 400
    resp.json.return_value = json_data
    resp.text = json.dumps(json_data)
    return resp


@pytest.fixture
def settings() -> Settings:
    return Settings(
        moolre_base=TEST_ENV["MOOLRE_BASE"],
        moolre_public_api_key=TEST_ENV["MOOLRE_PUBLIC_API_KEY"],
        moolre_username=TEST_ENV["MOOLRE_USERNAME"],
        moolre_secret=TEST_ENV["MOOLRE_SECRET"],
        moolre_account_number=TEST_ENV["MOOLRE_ACCOUNT_NUMBER"],
        hubtel_client_id=TEST_ENV["HUBTEL_CLIENT_ID"],
        hubtel_client_secret=TEST_ENV["HUBTEL_CLIENT_SECRET"],
        airtable_api_key=TEST_ENV["AIRTABLE_API_KEY"],
        airtable_base=TEST_ENV["AIRTABLE_BASE"],
        public_base_url=TEST_ENV["PUBLIC_BASE_URL"],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> PendingTransactionStore:
    return PendingTransactionStore(ttl_seconds=1800, clock=clock)


@pytest.fixture
def window(clock) -> DuplicateSuppressionWindow:
    return DuplicateSuppressionWindow(clock=clock)


@pytest.fixture
def app_env(monkeypatch):
    for name, value in TEST_ENV.items():
        monkeypatch.setenv(name, value)


@pytest.fixture
def client(app_env):
    from fastapi.testclient import TestClient

    from payconnect import index

    index.reset_state()
    with TestClient(index.app) as test_client:
        yield test_client
    index.reset_state()
