"""Kubernetes client module for pod label registration.

This module handles all interactions with the Kubernetes API.
"""

from vault_pod_labels.kubernetes.api import KubernetesClient
from vault_pod_labels.kubernetes.connection import Credentials, load_in_cluster_config
from vault_pod_labels.kubernetes.errors import (
    AuthRetryExhaustedError,
    DecodeError,
    KubernetesClientError,
    MetadataShapeError,
    NotFoundError,
    NotInClusterError,
    UnexpectedStatusError,
)
from vault_pod_labels.kubernetes.models import PatchOp, PatchOperation, Pod

__all__ = [
    "KubernetesClient",
    "Credentials",
    "load_in_cluster_config",
    "AuthRetryExhaustedError",
    "DecodeError",
    "KubernetesClientError",
    "MetadataShapeError",
    "NotFoundError",
    "NotInClusterError",
    "UnexpectedStatusError",
    "PatchOp",
    "PatchOperation",
    "Pod",
]
