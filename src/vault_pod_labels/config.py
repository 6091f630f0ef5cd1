"""Configuration module for service registration.

The namespace and name of the pod to label are taken from environment variables
first, then from the host's configuration mapping.
"""
import os
from collections.abc import Mapping

from pydantic import BaseModel, field_validator

ENV_VAR_KUBERNETES_NAMESPACE = "VAULT_K8S_NAMESPACE"
ENV_VAR_KUBERNETES_POD_NAME = "VAULT_K8S_POD_NAME"

CONFIG_KEY_NAMESPACE = "namespace"
CONFIG_KEY_POD_NAME = "pod_name"


class MissingConfigError(ValueError):
    """A required configuration parameter was not provided."""


class RegistrationConfig(BaseModel):
    """Configuration for labelling a pod.

    Attributes:
        namespace: Namespace of the pod to label.
        pod_name: Name of the pod to label.
    """
    namespace: str
    pod_name: str

    @field_validator("namespace", "pod_name")
    def validate_not_blank(cls, v):
        """Strip surrounding whitespace and reject blank values"""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @classmethod
    def resolve(cls, config: Mapping[str, str] | None = None,
                environ: Mapping[str, str] = os.environ) -> "RegistrationConfig":
        """Resolve the configuration from the environment, then ``config``.

        Args:
            config: The host's string-keyed configuration.
            environ: Environment to read; defaults to the process environment.

        Returns:
            The resolved configuration.

        Raises:
            MissingConfigError: If the namespace or pod name is set nowhere.
        """
        config = config or {}

        namespace = _first_set(environ.get(ENV_VAR_KUBERNETES_NAMESPACE), config.get(CONFIG_KEY_NAMESPACE))
        if not namespace:
            raise MissingConfigError(
                f'namespace must be provided via "{ENV_VAR_KUBERNETES_NAMESPACE}" '
                f'or the "{CONFIG_KEY_NAMESPACE}" config parameter'
            )

        pod_name = _first_set(environ.get(ENV_VAR_KUBERNETES_POD_NAME), config.get(CONFIG_KEY_POD_NAME))
        if not pod_name:
            raise MissingConfigError(
                f'pod name must be provided via "{ENV_VAR_KUBERNETES_POD_NAME}" '
                f'or the "{CONFIG_KEY_POD_NAME}" config parameter'
            )

        return cls(namespace=namespace, pod_name=pod_name)


def _first_set(*values: str | None) -> str | None:
    """Return the first value that is not blank, stripped."""
    for value in values:
        if value and value.strip():
            return value.strip()
    return None
