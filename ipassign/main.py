import os
import logging
import signal
import sys
import threading
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from .src.assigners import new_assigner
from .src.exceptions import ConfigurationError, RollbackError
from .src.kubernetes import KubernetesNodeClient
from .src.models import IPAssignConfig
from .src.reconciler import Reconciler

logger = logging.getLogger(__name__)

# Well under the default 30s pod termination grace period.
WATCH_TIMEOUT_SECONDS = 5
WATCH_BACKOFF_SECONDS = 5


class IPAssign:
    def __init__(self, stop_event: Optional[threading.Event] = None):
        self._init_logs()
        self.config = self._get_config()
        self.stop_event = stop_event or threading.Event()
        self.nodes = KubernetesNodeClient()
        self.reconciler = Reconciler(self.config, self.nodes, new_assigner(self.config))

    def _init_logs(self):
        logger = logging.getLogger()
        logHandler = logging.StreamHandler()
        formatter = JsonFormatter("{filename}{levelname}{asctime}{message}", style="{")
        logHandler.setFormatter(formatter)
        logger.addHandler(logHandler)
        logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    def _get_config(self) -> IPAssignConfig:
        return IPAssignConfig.from_env(os.environ)

    def reconcile(self):
        try:
            self.reconciler.reconcile(self.stop_event)
        except RollbackError as e:
            logger.critical(f"Node annotation and cloud state are inconsistent: {e}")
        except Exception as e:
            logger.error(f"Failed to reconcile nodes with IPs: {e}")

    def watch(self):
        self.reconcile()

        # Short server-side windows bound how long a stop waits on a quiet stream.
        resource_version = None
        while not self.stop_event.is_set():
            for event_type, node in self.nodes.watch_nodes(
                self.config.label_selector, WATCH_TIMEOUT_SECONDS, resource_version
            ):
                resource_version = node.metadata.resource_version
                if self.stop_event.is_set():
                    return
                logger.debug("Node %s event: %s", node.metadata.name, event_type)
                self.reconcile()
            logger.debug("Node watch window ended, resuming from %s", resource_version)

    def run(self):
        logger.info(
            "Assigning %s IPs tagged %s=%s to nodes labelled %s",
            self.config.provider,
            self.config.ip_tag_key,
            self.config.ip_tag_val,
            self.config.label_selector,
        )
        while not self.stop_event.is_set():
            try:
                self.watch()
            except Exception as e:
                logger.error(f"Node watch exited: {str(e)}")
                self.stop_event.wait(WATCH_BACKOFF_SECONDS)
        logger.info("Stopped")


def main():
    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info("Received signal %s, stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    try:
        ipassign = IPAssign(stop_event)
    except ConfigurationError as e:
        logger.critical(str(e))
        sys.exit(1)
    ipassign.run()


if __name__ == "__main__":
    main()
