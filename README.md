# trustgate

Building blocks for an admission controller that enforces image trust on
Kubernetes workloads. The package has three modules: `controller`,
`kubernetes` and `trust`.

## `trustgate.controller`

This module holds the types used in an admission call:

- `GroupVersionResource` identifies a resource kind. `str()` gives
  `group/version/resource`.
- `AdmissionRequest` has the fields `resource`, `namespace`, `name`,
  `operation` and `object` (the raw JSON bytes).
- `AdmissionResponse` has the fields `allowed`, `patch` and `message`.
- `Admitter` is an abstract class with one method, `admit(request)`.
- `FakeController` is an `Admitter` that allows every request.

## `trustgate.kubernetes`

`KubeWrapper.get_pod_spec(request)` decodes the request's object. It returns a
tuple: the JSON-pointer path of the pod spec, and the pod spec as a dict.

| Resource | Path |
| --- | --- |
| `v1/pods` | `/spec` |
| replication controllers, deployments, replica sets, daemon sets, stateful sets, `batch/v1` jobs | `/spec/template/spec` |
| `batch/v1beta1` and `batch/v2alpha1` cron jobs | `/spec/jobTemplate/spec/template/spec` |

The same resources are supported in the `extensions/v1beta1`, `apps/v1beta1`,
`apps/v1beta2` and `apps/v1` versions that apply to each.

Errors:

- An object that has `metadata.ownerReferences` raises `ObjectHasParentsError`.
- A replication controller, deployment, replica set or stateful set with
  `replicas: 0` raises `ObjectHasZeroReplicasError`. A missing `replicas`
  field is allowed.
- Any other resource raises `UnsupportedResourceError`.
- An object that is not valid JSON raises `ValueError` (a
  `json.JSONDecodeError`). So does a JSON value that is not a mapping.

### Image pull secrets from service accounts

For every kind except bare pods, the pod spec can be filled in from a service
account. This happens only when the request has a namespace and the spec has
no `imagePullSecrets`. The wrapper looks up the spec's `serviceAccountName`,
or `default` if none is set. It then appends that account's
`imagePullSecrets` to the spec.

If the service account is missing, `get_pod_spec` leaves the spec unchanged.
If you call `mutate_with_sa(namespace, pod_spec)` directly, a missing account
raises `ServiceAccountNotFoundError`.

Service accounts come from a `KubeClient`, an in-memory store built from
service-account dicts:

```python
from trustgate.controller import AdmissionRequest, GroupVersionResource
from trustgate.kubernetes import KubeClient, KubeWrapper

client = KubeClient([
    {
        "metadata": {"namespace": "default", "name": "default"},
        "imagePullSecrets": [{"name": "regsecret"}],
    }
])

request = AdmissionRequest(
    resource=GroupVersionResource(group="apps", version="v1", resource="deployments"),
    namespace="default",
    object=b'{"metadata":{"name":"nginx"},"spec":{"replicas":1,'
           b'"template":{"spec":{"containers":[{"name":"nginx","image":"docker.io/nginx"}]}}}}',
)

path, pod_spec = KubeWrapper(client).get_pod_spec(request)
# path == "/spec/template/spec"
# pod_spec["imagePullSecrets"] == [{"name": "regsecret"}]
```

## `trustgate.trust`

`DigestResolver(trust, secrets)` resolves the released digest of an image.

`get_digest(server, image, notary_token, target_name, signers)` works as
follows:

1. It asks the `TrustClient` for the image's `TrustRepository`.
2. It collects the `SignedTarget` entries for `target_name`. If there are
   none, it raises `TrustError`.
3. It takes the sha256 hash signed by the `targets` or `targets/releases`
   role, and returns it as a hex string.

When you pass `Signer` objects, each one also has to hold for the role
`targets/<signer>`:

- its PEM public key must be among that role's key IDs;
- that role must have signed the same digest.

Otherwise `TrustError` is raised.

`public_key_id(pem)` computes the key ID of a PEM public key or certificate.
It accepts ECDSA and RSA keys.

`get_signer_secret(namespace, name)` reads a signer from a secret in the
`SecretStore`. The secret must have `name` and `publicKey` entries in its
data.

- If either entry is empty, it raises `TrustError`.
- If the secret is missing, it raises `LookupError`.

`TrustClient` is abstract. Supply your own subclass:

```python
from trustgate.trust import DigestResolver, SignedTarget, TrustClient, TrustRepository


class StaticTrust(TrustClient):
    def get_notary_repo(self, server, image, token):
        return TrustRepository([
            SignedTarget(name="latest", role="targets", hashes={"sha256": b"1234567890"}),
        ])


resolver = DigestResolver(StaticTrust())
digest = resolver.get_digest(
    "https://trust.example.com:4443", "registry.example.com/app", "token", "latest"
)
# digest == "31323334353637383930"
```

## What it does not do

The package is a library of pieces. It does not:

- serve an admission webhook over HTTP, or produce admission review documents
  or JSON patches;
- look up image policies, or decide which images need trust enforcement;
- read registry credentials from image pull secrets, or fetch trust tokens
  from a registry;
- talk to a Kubernetes API server or a trust server. `KubeClient`,
  `SecretStore` and `TrustRepository` hold their data in memory, and
  `TrustClient` has no network implementation.

## Install

```
pip install trustgate
```

## Tests

```
pip install -e .[test]
pytest
```