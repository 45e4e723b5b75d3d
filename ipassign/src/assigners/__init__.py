from ..exceptions import ConfigurationError
from ..models import IPAssignConfig
from .aws import AWSAssigner
from .base import Assigner, instance_id
from .gcp import GCPAssigner

ASSIGNERS = {cls.name: cls for cls in (AWSAssigner, GCPAssigner)}


def new_assigner(config: IPAssignConfig) -> Assigner:
    try:
        cls = ASSIGNERS[config.provider]
    except KeyError:
        raise ConfigurationError(f"unknown provider {config.provider!r}") from None
    return cls.from_config(config)


__all__ = ["ASSIGNERS", "Assigner", "AWSAssigner", "GCPAssigner", "instance_id", "new_assigner"]
