"""Cloud resource API clients.

Clients: InMemoryCloudApi, AzureSdkClient, AzCliClient.
"""

from monitor_provisioner.cloud.api import CloudApi
from monitor_provisioner.cloud.az_cli import AzCliClient
from monitor_provisioner.cloud.azure_sdk import AzureSdkClient
from monitor_provisioner.cloud.memory import InMemoryCloudApi

__all__ = [
    "AzCliClient",
    "AzureSdkClient",
    "CloudApi",
    "InMemoryCloudApi",
]
