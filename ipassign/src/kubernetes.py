import logging
from typing import Iterator, Optional

from kubernetes import client, config, watch

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_kubernetes_config():
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.info("Not running in a cluster, loading kubeconfig")
        try:
            config.load_kube_config()
        except config.ConfigException as e:
            raise ConfigurationError("failed to load kubernetes configuration") from e


class KubernetesNodeClient:
    """Narrow view of the Node API: list, watch and annotate."""

    def __init__(self, v1: Optional[client.CoreV1Api] = None):
        if v1 is None:
            load_kubernetes_config()
            v1 = client.CoreV1Api()
        self.v1 = v1

    def list_nodes(self, label_selector: str) -> list:
        node_list = self.v1.list_node(label_selector=label_selector)
        return list(node_list.items)

    def watch_nodes(
        self, label_selector: str, timeout_seconds: int, resource_version: Optional[str] = None
    ) -> Iterator[tuple]:
        """Yields ``(event_type, node)`` until the server closes the stream.

        The server closes it after ``timeout_seconds``; pass the last seen
        ``resource_version`` to resume without replaying existing nodes.
        """
        kwargs = {}
        if resource_version:
            kwargs["resource_version"] = resource_version

        w = watch.Watch()
        try:
            for event in w.stream(
                self.v1.list_node,
                label_selector=label_selector,
                timeout_seconds=timeout_seconds,
                **kwargs,
            ):
                yield event["type"], event["object"]
        finally:
            w.stop()

    def patch_node_annotation(self, node_name: str, key: str, value: Optional[str]):
        body = {"metadata": {"annotations": {key: value}}}
        self.v1.patch_node(node_name, body)
