import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlparse

from kubernetes import client

from ..annotator import NodeAnnotator
from ..exceptions import AssignmentError, NoAddressAvailable, RollbackError
from ..models import Address, IPAssignConfig

logger = logging.getLogger(__name__)


def instance_id(node: client.V1Node) -> str:
    """Returns the last path segment of the node's provider ID.

    ``aws:///us-east-1a/i-0123`` gives ``i-0123`` and
    ``gce://project/us-central1-a/node-1`` gives ``node-1``.
    """
    provider_id = node.spec.provider_id if node.spec else None
    if not provider_id:
        raise AssignmentError(f"node {node.metadata.name!r} has no provider ID")

    try:
        path = urlparse(provider_id).path
    except ValueError as e:
        raise AssignmentError(f"failed to parse provider ID {provider_id!r} as a URL") from e

    segment = path.rstrip("/").split("/")[-1]
    if not segment:
        raise AssignmentError(f"unexpected provider ID format: {provider_id!r}")
    return segment


class Assigner(ABC):
    """Assigns a free public IP from the tagged pool to a node's instance.

    Subclasses provide the address lookup, the attach and the activation;
    :meth:`assign` fixes the order: mark the node, attach, roll back the mark
    if the attach fails, activate otherwise.
    """

    name: str

    def __init__(self, config: IPAssignConfig):
        self.config = config

    @classmethod
    @abstractmethod
    def from_config(cls, config: IPAssignConfig) -> "Assigner":
        ...

    @abstractmethod
    def next_available_address(self) -> Optional[Address]:
        ...

    @abstractmethod
    def attach(self, instance: str, address: Address, stop_event: threading.Event):
        ...

    @abstractmethod
    def activate(self, instance: str, address: Address, stop_event: threading.Event):
        ...

    def assign(
        self,
        node: client.V1Node,
        annotator: Optional[NodeAnnotator] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        if stop_event is None:
            stop_event = threading.Event()

        node_name = node.metadata.name
        instance = instance_id(node)

        address = self.next_available_address()
        if address is None:
            raise NoAddressAvailable()

        if self.config.dry_run:
            logger.info(
                "DRY RUN: not assigning IP %s to node %s (instance %s)",
                address.public_ip,
                node_name,
                instance,
            )
            return

        if annotator is not None:
            try:
                annotator.set(address.public_ip)
            except Exception as e:
                raise AssignmentError(
                    f"failed to mark node {node_name!r} with IP assignment {address.public_ip}"
                ) from e

        logger.info("Assigning IP %s to node %s (instance %s)", address.public_ip, node_name, instance)
        try:
            self.attach(instance, address, stop_event)
        except Exception as attach_error:
            if annotator is not None:
                try:
                    annotator.set("")
                except Exception as rollback_error:
                    raise RollbackError(
                        attach_error,
                        rollback_error,
                        f"failed to assign IP {address.public_ip} to node {node_name!r} "
                        f"AND failed to remove the annotation from that node",
                    ) from attach_error
            raise AssignmentError(
                f"failed to assign IP {address.public_ip} to node {node_name!r}"
            ) from attach_error

        self.activate(instance, address, stop_event)
        logger.info("Assigned IP %s to node %s", address.public_ip, node_name)
