import logging
import threading
from typing import Optional

from kubernetes import client

from .annotator import ANNOTATION_ASSIGNMENT, NodeAnnotator
from .assigners import Assigner
from .exceptions import NoAddressAvailable
from .kubernetes import KubernetesNodeClient
from .models import IPAssignConfig

logger = logging.getLogger(__name__)


def is_marked(node: client.V1Node, key: str = ANNOTATION_ASSIGNMENT) -> bool:
    annotations = node.metadata.annotations or {}
    return bool(annotations.get(key))


class Reconciler:
    """Pairs at most one unmarked node with a free address per pass."""

    def __init__(self, config: IPAssignConfig, nodes: KubernetesNodeClient, assigner: Assigner):
        self.config = config
        self.nodes = nodes
        self.assigner = assigner

    def next_unassigned_node(self) -> Optional[client.V1Node]:
        for node in self.nodes.list_nodes(self.config.label_selector):
            if not is_marked(node):
                return node
        return None

    def reconcile(self, stop_event: Optional[threading.Event] = None):
        node = self.next_unassigned_node()
        if node is None:
            logger.debug("All nodes matching %s have IP assignments", self.config.label_selector)
            return

        annotator = NodeAnnotator(self.nodes, node.metadata.name)
        try:
            self.assigner.assign(node, annotator, stop_event)
        except NoAddressAvailable:
            logger.warning("No IP addresses available for node %s", node.metadata.name)
