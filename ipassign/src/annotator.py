from .kubernetes import KubernetesNodeClient

# Records the public IP assigned to a Node. Assignment and activation are not
# simultaneous, so the Reconciler uses this to skip Nodes already processed.
ANNOTATION_ASSIGNMENT = "ipassign.cycore.io/assigned-ip"


class NodeAnnotator:
    """Sets or clears a single annotation on one Node."""

    def __init__(self, nodes: KubernetesNodeClient, node_name: str, key: str = ANNOTATION_ASSIGNMENT):
        self.nodes = nodes
        self.node_name = node_name
        self.key = key

    def set(self, value: str):
        # A null value in a merge patch removes the key.
        self.nodes.patch_node_annotation(self.node_name, self.key, value or None)
