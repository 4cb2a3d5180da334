import pytest

from trustgate.controller import (
    AdmissionRequest,
    AdmissionResponse,
    Admitter,
    FakeController,
    GroupVersionResource,
)


def test_fake_controller_allows_any_request():
    request = AdmissionRequest(
        resource=GroupVersionResource("", "v1", "pods"),
        namespace="default",
        object=b"{}",
    )
    response = FakeController().admit(request)
    assert response.allowed is True
    assert response.patch == b""


def test_fake_controller_allows_empty_request():
    response = FakeController().admit(AdmissionRequest())
    assert response == AdmissionResponse(allowed=True)


def test_admitter_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Admitter()


def test_custom_admitter_subclass_is_used():
    class Deny(Admitter):
        def admit(self, request):
            return AdmissionResponse(allowed=False, message=request.name)

    response = Deny().admit(AdmissionRequest(name="nginx"))
    assert response.allowed is False
    assert response.message == "nginx"


def test_group_version_resource_equality_and_hash():
    a = GroupVersionResource("apps", "v1", "deployments")
    b = GroupVersionResource("apps", "v1", "deployments")
    assert a == b
    assert {a: 1}[b] == 1
    assert a != GroupVersionResource("apps", "v1beta2", "deployments")


def test_group_version_resource_str():
    assert str(GroupVersionResource("apps", "v1", "deployments")) == "apps/v1/deployments"