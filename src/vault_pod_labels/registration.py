"""Service registration through pod labels.

This module keeps the labels of the pod we run in synchronized with the HA state
of the process, so load balancers and operators can select pods by role.
"""

import logging
import threading
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict

from vault_pod_labels.config import RegistrationConfig
from vault_pod_labels.kubernetes.api import KubernetesClient
from vault_pod_labels.kubernetes.errors import MetadataShapeError
from vault_pod_labels.kubernetes.models import (
    PATH_TO_LABELS,
    PATH_TO_METADATA,
    PatchOp,
    PatchOperation,
    label_path,
)


# Labels placed in the pod's metadata
LABEL_VAULT_VERSION = "vault-version"
LABEL_ACTIVE = "vault-ha-active"
LABEL_SEALED = "vault-ha-sealed"
LABEL_PERF_STANDBY = "vault-ha-perf-standby"
LABEL_INITIALIZED = "vault-ha-initialized"


class HAState(BaseModel):
    """Snapshot of the process HA state at startup."""

    model_config = ConfigDict(frozen=True)

    version: str
    is_active: bool = False
    is_sealed: bool = False
    is_performance_standby: bool = False
    is_initialized: bool = False


def to_label_value(b: bool) -> str:
    """Convert a bool to "true" or "false"."""
    return "true" if b else "false"


def _add_label(key: str, value: str) -> PatchOperation:
    return PatchOperation(op=PatchOp.ADD, path=label_path(key), value=value)


class ServiceRegistration:
    """Registers the process by labelling its pod.

    No state is kept locally; the pod labels are the source of truth and every
    notification is a single patch against them.
    """

    def __init__(
        self,
        shutdown_event: threading.Event,
        config: Mapping[str, str],
        state: HAState,
        logger: logging.Logger | None = None,
        client: KubernetesClient | None = None,
    ):
        """Register the pod and start watching for shutdown.

        Args:
            shutdown_event: Set by the host when the process is shutting down.
            config: The host's configuration, may hold "namespace" and "pod_name".
            state: HA state at startup, used for the initial labels.
            logger: Logger to use. Defaults to this module's logger.
            client: Kubernetes client to use. If None, one is created from the
                in-cluster configuration.

        Raises:
            MissingConfigError: If the namespace or pod name can't be resolved.
            KubernetesClientError: If the pod can't be read, reconciled or labelled.
        """
        self.logger = logger or logging.getLogger(__name__)

        resolved = RegistrationConfig.resolve(config)
        self.namespace = resolved.namespace
        self.pod_name = resolved.pod_name
        self.logger.debug(f"namespace: {self.namespace!r}")
        self.logger.debug(f"pod name: {self.pod_name!r}")

        self.client = client or KubernetesClient()

        # Verify that the pod exists and our configuration looks good
        self._ensure_label_containers()

        # Perform an initial labelling as the process starts up
        self.client.patch_pod(
            self.namespace,
            self.pod_name,
            _add_label(LABEL_VAULT_VERSION, state.version),
            _add_label(LABEL_ACTIVE, to_label_value(state.is_active)),
            _add_label(LABEL_SEALED, to_label_value(state.is_sealed)),
            _add_label(LABEL_PERF_STANDBY, to_label_value(state.is_performance_standby)),
            _add_label(LABEL_INITIALIZED, to_label_value(state.is_initialized)),
        )
        self.logger.info(f"Registered pod {self.namespace}/{self.pod_name}")

        self.shutdown_watcher = threading.Thread(
            target=self._on_shutdown,
            args=(shutdown_event,),
            name=f"shutdown-watcher-{self.pod_name}",
            daemon=True,
        )
        self.shutdown_watcher.start()

    def _ensure_label_containers(self) -> None:
        """Create the metadata and labels objects if the pod lacks them.

        Adding a label under a missing parent fails on the API server, so the
        parents are created one at a time first.
        """
        pod = self.client.get_pod(self.namespace, self.pod_name)

        if not pod.has_metadata:
            self.logger.info(f"Pod {self.namespace}/{self.pod_name} has no metadata, creating it")
            self.client.patch_pod(
                self.namespace, self.pod_name, PatchOperation(op=PatchOp.ADD, path=PATH_TO_METADATA, value={})
            )
            self.client.patch_pod(
                self.namespace, self.pod_name, PatchOperation(op=PatchOp.ADD, path=PATH_TO_LABELS, value={})
            )
            return

        if not pod.has_labels:
            self.logger.info(f"Pod {self.namespace}/{self.pod_name} has no labels, creating them")
            self.client.patch_pod(
                self.namespace, self.pod_name, PatchOperation(op=PatchOp.ADD, path=PATH_TO_LABELS, value={})
            )
            return

        if not isinstance(pod.labels, dict):
            raise MetadataShapeError(
                f'pod name "{self.pod_name}" in namespace "{self.namespace}" must have "{PATH_TO_LABELS}" '
                f"as a mapping to be usable for service registration"
            )

    def _patch_label(self, key: str, value: bool) -> None:
        self.client.patch_pod(self.namespace, self.pod_name, _add_label(key, to_label_value(value)))

    def notify_active_state_change(self, is_active: bool) -> None:
        self._patch_label(LABEL_ACTIVE, is_active)

    def notify_sealed_state_change(self, is_sealed: bool) -> None:
        self._patch_label(LABEL_SEALED, is_sealed)

    def notify_performance_standby_state_change(self, is_standby: bool) -> None:
        self._patch_label(LABEL_PERF_STANDBY, is_standby)

    def notify_initialized_state_change(self, is_initialized: bool) -> None:
        self._patch_label(LABEL_INITIALIZED, is_initialized)

    def _on_shutdown(self, shutdown_event: threading.Event) -> None:
        """Leave the labels in their final state once shutdown is signalled."""
        shutdown_event.wait()

        try:
            self.client.patch_pod(
                self.namespace,
                self.pod_name,
                _add_label(LABEL_ACTIVE, to_label_value(False)),
                _add_label(LABEL_SEALED, to_label_value(True)),
                _add_label(LABEL_PERF_STANDBY, to_label_value(False)),
                _add_label(LABEL_INITIALIZED, to_label_value(False)),
            )
        except Exception as e:
            # Nobody is left to report to once the process is exiting
            self.logger.error(
                f'unable to set final status on pod name "{self.pod_name}" in namespace "{self.namespace}" '
                f"on shutdown: {e}"
            )
            return
        self.logger.info(f"Set final labels on pod {self.namespace}/{self.pod_name}")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the shutdown watcher to finish.

        Args:
            timeout: Maximum number of seconds to wait. None waits forever.

        Returns:
            True if the watcher has finished.
        """
        self.shutdown_watcher.join(timeout)
        return not self.shutdown_watcher.is_alive()
