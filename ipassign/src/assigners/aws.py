import logging
import threading
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import AssignmentError, InterfaceNotFound, OperationCancelled
from ..models import Address, IPAssignConfig
from .base import Assigner

logger = logging.getLogger(__name__)

# EC2 gives no signal for when an association has taken effect on the
# instance, so we wait this long before rebooting it.
ACTIVATION_DELAY_SECONDS = 60


class AWSAssigner(Assigner):
    """Elastic IP assignment for EC2 instances."""

    name = "aws"

    def __init__(self, config: IPAssignConfig, ec2=None):
        super().__init__(config)
        if ec2 is None:
            ec2 = boto3.client(
                "ec2",
                region_name=config.aws.region,
                aws_access_key_id=config.aws.access_key_id,
                aws_secret_access_key=config.aws.secret_access_key,
            )
        self.ec2 = ec2

    @classmethod
    def from_config(cls, config: IPAssignConfig) -> "AWSAssigner":
        return cls(config)

    def next_available_address(self) -> Optional[Address]:
        try:
            res = self.ec2.describe_addresses(
                Filters=[
                    {"Name": f"tag:{self.config.ip_tag_key}", "Values": [self.config.ip_tag_val]},
                    {"Name": "tag:group", "Values": [self.config.group]},
                ]
            )
        except (BotoCoreError, ClientError) as e:
            raise AssignmentError("failed to get available IPs") from e

        for eip in res.get("Addresses", []):
            address = Address(
                public_ip=eip["PublicIp"],
                allocation_id=eip["AllocationId"],
                tags={t["Key"]: t["Value"] for t in eip.get("Tags", [])},
                instance_id=eip.get("InstanceId") or None,
            )
            if not address.attached:
                return address
        return None

    def interface_id(self, instance: str) -> str:
        try:
            res = self.ec2.describe_network_interfaces(
                Filters=[{"Name": "attachment.instance-id", "Values": [instance]}]
            )
        except (BotoCoreError, ClientError) as e:
            raise AssignmentError(f"failed to get interfaces for instance {instance}") from e

        interfaces = res.get("NetworkInterfaces", [])
        if not interfaces:
            raise InterfaceNotFound(f"instance {instance} has no interfaces")

        # EKS instances carry several interfaces; only the one that already
        # has a public IP association is reachable from outside.
        for interface in interfaces:
            if interface.get("Association"):
                return interface["NetworkInterfaceId"]
        raise InterfaceNotFound(f"instance {instance}")

    def attach(self, instance: str, address: Address, stop_event: threading.Event):
        interface = self.interface_id(instance)
        self.ec2.associate_address(
            AllocationId=address.allocation_id,
            NetworkInterfaceId=interface,
            AllowReassociation=True,
        )

    def activate(self, instance: str, address: Address, stop_event: threading.Event):
        logger.info("Waiting %ss following association before reboot", ACTIVATION_DELAY_SECONDS)
        if stop_event.wait(ACTIVATION_DELAY_SECONDS):
            raise OperationCancelled(f"reboot of instance {instance} after assigning IP {address.public_ip}")

        logger.info("Rebooting instance %s after assigning IP %s", instance, address.public_ip)
        try:
            self.ec2.reboot_instances(InstanceIds=[instance])
        except (BotoCoreError, ClientError) as e:
            raise AssignmentError(f"failed to reboot instance {instance}") from e
