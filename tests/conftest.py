"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest

from catalyst_datasource.backend.models import InstanceSettings
from catalyst_datasource.config import Settings, get_settings
from tests.helpers import BASE_URL, FakeClock


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit a real Catalyst Center (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so tests never pick up a developer's real instance.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def instance() -> InstanceSettings:
    return InstanceSettings(uid="ds-1", base_url=BASE_URL, username="admin", password="secret")


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = Settings(
        catalyst_base_url=BASE_URL,
        catalyst_username="admin",
        catalyst_password="secret",
        catalyst_api_token="",
        catalyst_insecure_skip_verify=True,
        catalyst_ca_cert="",
        catalyst_instance_uid="default",
        query_timeout_seconds=30.0,
        log_level="WARNING",
    )
    with (
        patch("catalyst_datasource.config.get_settings", return_value=fake_settings),
        patch("catalyst_datasource.api.main.get_settings", return_value=fake_settings),
        patch("catalyst_datasource.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings
