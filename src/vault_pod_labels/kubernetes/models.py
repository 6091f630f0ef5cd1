"""Data models exchanged with the Kubernetes API."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

# Root of the pod labels in JSON-Pointer form
PATH_TO_METADATA = "/metadata"
PATH_TO_LABELS = "/metadata/labels"


class PatchOp(str, Enum):
    """JSON-Patch operations used to update pods."""

    ADD = "add"
    REPLACE = "replace"


class PatchOperation(BaseModel):
    """A single JSON-Patch operation.

    Attributes:
        op: The operation to apply.
        path: JSON-Pointer to the target location, e.g. ``/metadata/labels/vault-ha-active``.
        value: A label value, or a mapping when creating a container.
    """

    model_config = ConfigDict(frozen=True)

    op: PatchOp
    path: str
    value: str | dict[str, Any]

    def to_json(self) -> dict[str, Any]:
        """Render the operation as it is sent to the API server."""
        return self.model_dump(mode="json")


class Pod(BaseModel):
    """Read-only view of a pod as returned by the API server.

    Only the metadata is modelled; it may be missing entirely, and when present
    it may or may not contain a ``labels`` mapping.
    """

    model_config = ConfigDict(extra="allow")

    metadata: dict[str, Any] | None = None

    @property
    def has_metadata(self) -> bool:
        return self.metadata is not None

    @property
    def has_labels(self) -> bool:
        return self.metadata is not None and self.metadata.get("labels") is not None

    @property
    def name(self) -> str | None:
        if self.metadata is None:
            return None
        return self.metadata.get("name")

    @property
    def labels(self) -> Any:
        """Labels as found on the pod, an empty mapping when there are none."""
        if not self.has_labels:
            return {}
        return self.metadata["labels"]


def escape_pointer_token(token: str) -> str:
    """Escape a single JSON-Pointer reference token (RFC 6901)."""
    return token.replace("~", "~0").replace("/", "~1")


def label_path(key: str) -> str:
    """Return the JSON-Pointer path of the label ``key``."""
    return f"{PATH_TO_LABELS}/{escape_pointer_token(key)}"
