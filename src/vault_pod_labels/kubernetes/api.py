"""Kubernetes API client for reading and patching a single pod.

Requests are authenticated with the pod's service account token. When the API
server rejects the token the credentials are reloaded from disk and the request
is retried once, since Kubernetes periodically rotates the projected token.
"""

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar
from urllib.parse import quote

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel, ValidationError

from vault_pod_labels.kubernetes.connection import Credentials, build_api_client, load_in_cluster_config
from vault_pod_labels.kubernetes.errors import (
    AuthRetryExhaustedError,
    DecodeError,
    NotFoundError,
    UnexpectedStatusError,
)
from vault_pod_labels.kubernetes.models import PatchOperation, Pod

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

POD_PATH = "/api/v1/namespaces/{namespace}/pods/{name}"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"

SUCCESS_STATUSES = frozenset({200, 201, 202})
AUTH_FAILURE_STATUSES = frozenset({401, 403})
STATUS_NOT_FOUND = 404


class KubernetesClient:
    """Client for the pod endpoints of the Kubernetes API.

    The credentials and the API client built from them are swapped together
    under a lock, so concurrent callers always observe a consistent pair even
    while another thread is reloading after an authorization failure.
    """

    def __init__(
        self,
        credentials: Credentials | None = None,
        loader: Callable[[], Credentials] = load_in_cluster_config,
        request_timeout: float | None = None,
    ):
        """Initialize the client.

        Args:
            credentials: Initial credentials. If None, they are loaded with ``loader``.
            loader: Callable producing fresh credentials, used again on 401/403.
            request_timeout: Optional per-request timeout in seconds.

        Raises:
            NotInClusterError: If no credentials were given and loading them fails.
        """
        self._loader = loader
        self.request_timeout = request_timeout
        self._lock = threading.Lock()
        if credentials is None:
            credentials = loader()
        self._credentials = credentials
        self._api_client = build_api_client(credentials)

    @property
    def credentials(self) -> Credentials:
        with self._lock:
            return self._credentials

    def _snapshot(self) -> tuple[Credentials, client.ApiClient]:
        with self._lock:
            return self._credentials, self._api_client

    def reload_credentials(self) -> Credentials:
        """Load fresh credentials and make them current.

        Returns:
            The newly loaded credentials.

        Raises:
            NotInClusterError: If the credentials can't be loaded.
        """
        credentials = self._loader()
        api_client = build_api_client(credentials)
        with self._lock:
            previous = self._api_client
            self._credentials = credentials
            self._api_client = api_client
        previous.close()
        logger.info("Reloaded Kubernetes credentials")
        return credentials

    def get_pod(self, namespace: str, pod_name: str) -> Pod:
        """Get a pod by name.

        Args:
            namespace: Namespace of the pod.
            pod_name: Name of the pod.

        Returns:
            The pod.

        Raises:
            NotFoundError: If the pod does not exist.
        """
        return self._do("GET", POD_PATH, {"namespace": namespace, "name": pod_name}, response_model=Pod)

    def patch_pod(self, namespace: str, pod_name: str, *patches: PatchOperation) -> None:
        """Apply JSON-Patch operations to a pod in a single request.

        The operations are applied atomically by the API server; the pod is
        updated in place without being recreated.

        Args:
            namespace: Namespace of the pod.
            pod_name: Name of the pod.
            *patches: Operations to apply, in order.

        Raises:
            NotFoundError: If the pod does not exist.
        """
        if not patches:
            raise ValueError("at least one patch operation is required")
        self._do(
            "PATCH",
            POD_PATH,
            {"namespace": namespace, "name": pod_name},
            body=[patch.to_json() for patch in patches],
            content_type=JSON_PATCH_CONTENT_TYPE,
        )

    def _do(
        self,
        method: str,
        resource_path: str,
        path_params: dict[str, str],
        body: Any = None,
        content_type: str | None = None,
        response_model: type[M] | None = None,
    ) -> M | None:
        """Execute a request, retrying once with reloaded credentials on 401/403."""
        retried = False
        while True:
            credentials, api_client = self._snapshot()
            url = credentials.host + _expand_path(resource_path, path_params)
            headers = {
                "Authorization": credentials.authorization,
                "Accept": "application/json",
            }
            if content_type:
                headers["Content-Type"] = content_type

            try:
                response = api_client.call_api(
                    resource_path,
                    method,
                    path_params=path_params,
                    header_params=headers,
                    body=body,
                    _return_http_data_only=True,
                    _preload_content=False,
                    _request_timeout=self.request_timeout,
                )
                status = response.status
                data = _read_body(response)
            except ApiException as e:
                status = e.status
                data = _decode_text(e.body)

            logger.debug(f"{method} {url} -> {status}")

            if status in SUCCESS_STATUSES:
                if response_model is None:
                    return None
                try:
                    return response_model.model_validate(json.loads(data))
                except (json.JSONDecodeError, ValidationError) as e:
                    raise DecodeError(response_model.__name__, method, url, status, data) from e

            if status == STATUS_NOT_FOUND:
                raise NotFoundError(method, url)

            if status in AUTH_FAILURE_STATUSES:
                if retried:
                    raise AuthRetryExhaustedError(method, url, status, data)
                # The token file may have been rotated since we last read it
                logger.warning(f"Authorization failed with status {status} for {method} {url}, reloading credentials")
                self.reload_credentials()
                retried = True
                continue

            raise UnexpectedStatusError(method, url, status, data)


def _expand_path(resource_path: str, path_params: dict[str, str]) -> str:
    for key, value in path_params.items():
        resource_path = resource_path.replace(f"{{{key}}}", quote(str(value), safe=""))
    return resource_path


def _read_body(response: Any) -> str:
    try:
        return _decode_text(response.data)
    finally:
        response.release_conn()


def _decode_text(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
