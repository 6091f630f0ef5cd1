"""Errors raised while talking to the Kubernetes API.

Diagnostic messages carry the request method, URL, status code and response
body. Headers are never included since they hold the bearer token.
"""


class KubernetesClientError(Exception):
    """Base class for errors raised by the Kubernetes client."""


class NotInClusterError(KubernetesClientError):
    """The in-cluster service account configuration could not be loaded."""


class NotFoundError(KubernetesClientError):
    """The requested pod does not exist."""

    def __init__(self, method: str, url: str):
        self.method = method
        self.url = url
        super().__init__(f"not found: method: {method}, url: {url}")


class UnexpectedStatusError(KubernetesClientError):
    """The API server answered with a status code we don't handle."""

    def __init__(self, method: str, url: str, status: int, body: str):
        self.method = method
        self.url = url
        self.status = status
        self.body = body
        super().__init__(f"unexpected status code: {sanitized_debugging_info(method, url, status, body)}")


class AuthRetryExhaustedError(UnexpectedStatusError):
    """Authorization failed again after reloading credentials."""


class DecodeError(KubernetesClientError):
    """A successful response body did not have the expected shape."""

    def __init__(self, target: str, method: str, url: str, status: int, body: str):
        self.target = target
        self.status = status
        self.body = body
        super().__init__(f"unable to read as {target}: {sanitized_debugging_info(method, url, status, body)}")


class MetadataShapeError(KubernetesClientError):
    """The pod metadata cannot hold labels and cannot be reconciled."""


def sanitized_debugging_info(method: str, url: str, status: int, body: str) -> str:
    """Describe a request/response pair without any headers."""
    return f"method: {method}, url: {url}, statuscode: {status}, body: {body}"
