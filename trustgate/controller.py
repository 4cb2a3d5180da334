"""Admission request/response types and the controller interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class GroupVersionResource:
    """Identifies a kind of Kubernetes resource by group, version and name."""

    group: str = ""
    version: str = ""
    resource: str = ""

    def __str__(self) -> str:
        return f"{self.group}/{self.version}/{self.resource}"


@dataclass
class AdmissionRequest:
    """An admission request as received by the webhook."""

    resource: GroupVersionResource = field(default_factory=GroupVersionResource)
    namespace: str = ""
    name: str = ""
    operation: str = ""
    object: bytes = b""


@dataclass
class AdmissionResponse:
    """The verdict returned for an admission request."""

    allowed: bool = False
    patch: bytes = b""
    message: str = ""


class Admitter(ABC):
    """Anything able to decide on an admission request."""

    @abstractmethod
    def admit(self, request: AdmissionRequest) -> AdmissionResponse:
        """Return the admission verdict for ``request``."""


class FakeController(Admitter):
    """A controller that allows every request; useful as a stub."""

    def admit(self, request: AdmissionRequest) -> AdmissionResponse:
        return AdmissionResponse(allowed=True)