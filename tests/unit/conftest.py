import threading
from unittest import mock

import pytest
from kubernetes import client

from ipassign.src.kubernetes import KubernetesNodeClient
from ipassign.src.models import AWSSettings, GCPSettings, IPAssignConfig

ENV_VARS = (
    "PROVIDER",
    "IP_TAG_KEY",
    "IP_TAG_VAL",
    "NODE_KEY",
    "NODE_VAL",
    "GROUP",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_REGION",
    "GCP_PROJECT",
    "ZONE",
    "DRY_RUN",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def aws_env(monkeypatch, clean_env):
    for name, value in {
        "PROVIDER": "aws",
        "IP_TAG_KEY": "voice",
        "IP_TAG_VAL": "proxy",
        "NODE_KEY": "voice",
        "NODE_VAL": "proxy",
        "GROUP": "asterisk",
        "AWS_ACCESS_KEY_ID": "AKIAEXAMPLE",
        "AWS_SECRET_ACCESS_KEY": "secret",
        "AWS_REGION": "us-east-1",
    }.items():
        monkeypatch.setenv(name, value)


@pytest.fixture
def aws_config():
    return IPAssignConfig(
        provider="aws",
        ip_tag_key="voice",
        ip_tag_val="proxy",
        node_key="voice",
        node_val="proxy",
        group="asterisk",
        aws=AWSSettings(access_key_id="AKIAEXAMPLE", secret_access_key="secret", region="us-east-1"),
    )


@pytest.fixture
def gcp_config():
    return IPAssignConfig(
        provider="gcp",
        ip_tag_key="voice",
        ip_tag_val="proxy",
        node_key="voice",
        node_val="proxy",
        gcp=GCPSettings(project="my-project", zone="us-central1-a"),
    )


@pytest.fixture
def make_node():
    def _make_node(name="n1", provider_id="aws:///us-east-1a/i-0123", annotations=None):
        return client.V1Node(
            metadata=client.V1ObjectMeta(name=name, labels={"voice": "proxy"}, annotations=annotations),
            spec=client.V1NodeSpec(provider_id=provider_id),
        )

    return _make_node


@pytest.fixture
def core_v1():
    return mock.Mock(spec=client.CoreV1Api)


@pytest.fixture
def nodes(core_v1):
    return KubernetesNodeClient(core_v1)


@pytest.fixture
def stop_event():
    event = mock.Mock(spec=threading.Event)
    event.wait.return_value = False
    return event
