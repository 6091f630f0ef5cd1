"""In-cluster credential loading.

This module discovers the service account token, the CA bundle and the API
server address that Kubernetes mounts into every pod.
"""
import logging
import os
from collections.abc import Mapping

from kubernetes import client, config
from kubernetes.config.incluster_config import (
    SERVICE_CERT_FILENAME,
    SERVICE_HOST_ENV_NAME,
    SERVICE_PORT_ENV_NAME,
    SERVICE_TOKEN_FILENAME,
    InClusterConfigLoader,
)
from pydantic import BaseModel, ConfigDict, SecretStr

from vault_pod_labels.kubernetes.errors import NotInClusterError

logger = logging.getLogger(__name__)


class Credentials(BaseModel):
    """Immutable snapshot of the credentials used to reach the API server.

    Attributes:
        host: Base URL of the API server, e.g. ``https://10.0.0.1:443``.
        bearer_token: Service account token.
        ca_cert_file: Path to the CA bundle the server certificate must chain to.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    bearer_token: SecretStr
    ca_cert_file: str

    @property
    def authorization(self) -> str:
        """Value of the ``Authorization`` header for these credentials."""
        return f"Bearer {self.bearer_token.get_secret_value()}"


def load_in_cluster_config(
    token_file: str = SERVICE_TOKEN_FILENAME,
    ca_cert_file: str = SERVICE_CERT_FILENAME,
    environ: Mapping[str, str] = os.environ,
) -> Credentials:
    """Load credentials from the pod's service account.

    Args:
        token_file: Path to the mounted service account token.
        ca_cert_file: Path to the mounted CA bundle.
        environ: Environment holding the API server host and port.

    Returns:
        A fresh credentials snapshot.

    Raises:
        NotInClusterError: If the host/port variables are unset or the token or
            CA bundle cannot be read.
    """
    configuration = client.Configuration()
    loader = InClusterConfigLoader(
        token_filename=token_file,
        cert_filename=ca_cert_file,
        try_refresh_token=False,
        environ=environ,
    )
    try:
        loader.load_and_set(configuration)
    except config.ConfigException as e:
        raise NotInClusterError(
            f"unable to load in-cluster configuration, {SERVICE_HOST_ENV_NAME} and "
            f"{SERVICE_PORT_ENV_NAME} must be defined and the service account mounted: {e}"
        ) from e
    except OSError as e:
        raise NotInClusterError(f"unable to read in-cluster service account files: {e}") from e

    # The loader keeps the header value as "bearer <token>"; the api_key slot it
    # is copied into has been renamed across client releases
    _, _, token = loader.token.partition(" ")
    credentials = Credentials(
        host=loader.host,
        bearer_token=token.strip(),
        ca_cert_file=loader.ssl_ca_cert,
    )
    logger.info(f"Using in-cluster configuration for {credentials.host}")
    return credentials


def build_api_client(credentials: Credentials) -> client.ApiClient:
    """Create an API client trusting only the credentials' CA bundle.

    Authentication headers are attached per request, so the returned client
    carries no token of its own.
    """
    configuration = client.Configuration()
    configuration.host = credentials.host
    configuration.ssl_ca_cert = credentials.ca_cert_file
    configuration.verify_ssl = True
    return client.ApiClient(configuration)
