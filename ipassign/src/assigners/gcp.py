import logging
import threading
from typing import Optional

import google.auth
import requests
from google.auth.exceptions import DefaultCredentialsError
from googleapiclient import discovery
from googleapiclient.errors import HttpError

from ..exceptions import (
    AssignmentError,
    ConfigurationError,
    InstanceConfigurationError,
    OperationCancelled,
    OperationFailed,
)
from ..models import Address, IPAssignConfig
from .base import Assigner

logger = logging.getLogger(__name__)

METADATA_URL = "http://metadata.google.internal/computeMetadata/v1/"
METADATA_HEADERS = {"Metadata-Flavor": "Google"}
POLL_INTERVAL_SECONDS = 1

ACCESS_CONFIG_NAME = "External NAT"


def _metadata(path: str) -> str:
    try:
        response = requests.get(METADATA_URL + path, headers=METADATA_HEADERS, timeout=5)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ConfigurationError(f"failed to read {path} from metadata server") from e
    return response.text.strip()


def region_of(zone: str) -> str:
    return zone.rsplit("-", 1)[0]


def operation_error(error: Optional[dict]) -> Optional[str]:
    """Joins the messages of an operation's error list, or None if empty."""
    if not error or not error.get("errors"):
        return None
    return ",".join(e.get("message", "") for e in error["errors"])


class GCPAssigner(Assigner):
    """Static external IP assignment for Compute Engine instances.

    The instance name is taken from the node's provider ID. Replacing the
    interface's access config is what activates the new address, so there is
    no separate activation step.
    """

    name = "gcp"

    def __init__(self, config: IPAssignConfig, project: str, zone: str, compute=None):
        super().__init__(config)
        self.project = project
        self.zone = zone
        self.region = region_of(zone)
        if compute is None:
            compute = discovery.build("compute", "v1", cache_discovery=False)
        self.compute = compute

    @classmethod
    def from_config(cls, config: IPAssignConfig) -> "GCPAssigner":
        try:
            credentials, default_project = google.auth.default()
        except DefaultCredentialsError as e:
            raise ConfigurationError("failed to load GCP credentials") from e

        project = config.gcp.project or default_project or _metadata("project/project-id")
        zone = config.gcp.zone or _metadata("instance/zone").split("/")[-1]
        compute = discovery.build("compute", "v1", credentials=credentials, cache_discovery=False)
        return cls(config, project, zone, compute=compute)

    def _filter(self) -> str:
        clauses = [f'labels.{self.config.ip_tag_key} = "{self.config.ip_tag_val}"']
        if self.config.group:
            clauses.append(f'labels.group = "{self.config.group}"')
        return " AND ".join(f"({c})" for c in clauses)

    def next_available_address(self) -> Optional[Address]:
        try:
            res = (
                self.compute.addresses()
                .list(project=self.project, region=self.region, filter=self._filter())
                .execute()
            )
        except HttpError as e:
            raise AssignmentError(
                f"failed to get IP list from project {self.project!r}, region {self.region!r} "
                f"matching labels {self.config.ip_tag_key!r} = {self.config.ip_tag_val!r}"
            ) from e

        for item in res.get("items", []):
            address = Address(
                public_ip=item["address"],
                allocation_id=item["name"],
                tags=item.get("labels", {}),
                status=item.get("status"),
            )
            # RESERVED means allocated to the project but not in use.
            if address.status == "RESERVED":
                return address
        return None

    def wait_for_operation(self, operation: dict, stop_event: threading.Event, description: str):
        while operation.get("status") != "DONE":
            if stop_event.wait(POLL_INTERVAL_SECONDS):
                raise OperationCancelled(f"{description} cancelled")
            operation = (
                self.compute.zoneOperations()
                .get(project=self.project, zone=self.zone, operation=operation["name"])
                .execute()
            )

        message = operation_error(operation.get("error"))
        if message:
            raise OperationFailed(f"{description}: {message}")

    def attach(self, instance: str, address: Address, stop_event: threading.Event):
        instances = self.compute.instances()
        try:
            inst = instances.get(project=self.project, zone=self.zone, instance=instance).execute()
        except HttpError as e:
            raise AssignmentError(f"failed to load instance {instance!r}") from e

        interfaces = inst.get("networkInterfaces", [])
        if len(interfaces) != 1:
            raise InstanceConfigurationError(
                f"unhandled interfaces count ({len(interfaces)}) for instance {instance!r}"
            )
        interface = interfaces[0]
        access_configs = interface.get("accessConfigs", [])
        if len(access_configs) > 1:
            raise InstanceConfigurationError(
                f"unhandled accessConfig count ({len(access_configs)}) for instance {instance!r}"
            )

        if access_configs:
            logger.info("Removing access config %r from instance %s", access_configs[0]["name"], instance)
            try:
                op = instances.deleteAccessConfig(
                    project=self.project,
                    zone=self.zone,
                    instance=instance,
                    accessConfig=access_configs[0]["name"],
                    networkInterface=interface["name"],
                ).execute()
            except HttpError as e:
                raise AssignmentError(f"failed to delete existing accessConfig from instance {instance!r}") from e
            self.wait_for_operation(op, stop_event, f"IP deletion from {instance!r}")

        try:
            op = instances.addAccessConfig(
                project=self.project,
                zone=self.zone,
                instance=instance,
                networkInterface=interface["name"],
                body={
                    "name": ACCESS_CONFIG_NAME,
                    "natIP": address.public_ip,
                    "networkTier": "PREMIUM",
                    "type": "ONE_TO_ONE_NAT",
                },
            ).execute()
        except HttpError as e:
            raise AssignmentError(f"failed to assign {address.public_ip} to {instance!r}") from e
        self.wait_for_operation(op, stop_event, f"IP assignment of {address.public_ip} to {instance!r}")

    def activate(self, instance: str, address: Address, stop_event: threading.Event):
        pass
