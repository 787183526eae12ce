"""Integration test fixtures and infrastructure detection.

Run with:  pytest tests/integration/ -m integration -v
Requires:  an existing web app named by MONITOR_PROVISIONER_TEST_APP
           ("<resource-group>/<app-name>"), plus a logged-in ``az`` CLI
           for the az tests or AZURE_SUBSCRIPTION_ID and working Azure
           credentials for the SDK tests.
Tests skip automatically when their backend is unavailable.
"""

from __future__ import annotations

import os
import shutil
import subprocess

import pytest

from monitor_provisioner.cloud.az_cli import AzCliClient
from monitor_provisioner.cloud.azure_sdk import SUBSCRIPTION_ENV, AzureSdkClient

TEST_APP_ENV = "MONITOR_PROVISIONER_TEST_APP"
TEST_EMAIL_ENV = "MONITOR_PROVISIONER_TEST_EMAIL"


# ---------------------------------------------------------------------------
# Infrastructure detection (evaluated once at import time)
# ---------------------------------------------------------------------------

def _is_az_logged_in() -> bool:
    az = shutil.which("az")
    if az is None:
        return False
    try:
        result = subprocess.run(
            [az, "account", "show", "--output", "json"],
            capture_output=True, text=True, timeout=30,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


AZ_AVAILABLE = _is_az_logged_in()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def az_client() -> AzCliClient:
    if not AZ_AVAILABLE:
        pytest.skip("az CLI not installed or not logged in. Run: az login")
    return AzCliClient()


@pytest.fixture(scope="session")
def sdk_client() -> AzureSdkClient:
    if not os.environ.get(SUBSCRIPTION_ENV):
        pytest.skip(f"Set {SUBSCRIPTION_ENV} to run the SDK tests")
    client = AzureSdkClient()
    if client.get_current_account() is None:
        pytest.skip("No usable Azure credential (az login, environment or managed identity)")
    return client


@pytest.fixture(scope="session")
def target_app() -> tuple[str, str]:
    """(resource_group, app_name) of a disposable web app."""
    value = os.environ.get(TEST_APP_ENV, "")
    if "/" not in value:
        pytest.skip(f"Set {TEST_APP_ENV}=<resource-group>/<app-name> to run")
    resource_group, app_name = value.split("/", 1)
    return resource_group, app_name


@pytest.fixture(scope="session")
def alert_email() -> str:
    return os.environ.get(TEST_EMAIL_ENV, "monitoring-inttest@example.com")
