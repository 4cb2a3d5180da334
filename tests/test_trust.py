from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.x509.oid import NameOID

from trustgate.trust import (
    DigestResolver,
    SecretStore,
    SignedTarget,
    Signer,
    TrustClient,
    TrustError,
    TrustRepository,
    public_key_id,
)

DIGEST_HEX = "31323334353637383930"
SERVER = "https://registry.ng.bluemix.net:4443"
IMAGE = "registry.ng.bluemix.net/hello"


class RecordingTrustClient(TrustClient):
    def __init__(self, repo=None, error=None):
        self.repo = repo
        self.error = error
        self.calls = []

    def get_notary_repo(self, server, image, token):
        self.calls.append((server, image, token))
        if self.error is not None:
            raise self.error
        return self.repo


def _ec_pem():
    key = ec.generate_private_key(ec.SECP256R1())
    return key, key.public_key().public_bytes(
        Encoding.PEM, PublicFormat.SubjectPublicKeyInfo
    ).decode()


def _resolver(targets):
    client = RecordingTrustClient(TrustRepository(targets))
    return DigestResolver(client), client


def _signed(role, digest=b"1234567890", keys=(), name="latest"):
    return SignedTarget(name=name, role=role, hashes={"sha256": digest}, keys=frozenset(keys))


def test_digest_without_signers():
    resolver, client = _resolver(
        [_signed("targets/wibble", keys={"whatever"}), _signed("targets/releases")]
    )
    assert resolver.get_digest(SERVER, IMAGE, "token", "latest", []) == DIGEST_HEX
    assert client.calls == [(SERVER, IMAGE, "token")]


def test_last_released_target_wins():
    resolver, _ = _resolver([_signed("targets", digest=b"abc"), _signed("targets/releases")])
    assert resolver.get_digest(SERVER, IMAGE, "token", "latest") == DIGEST_HEX


def test_repository_filters_by_target_name():
    repo = TrustRepository([_signed("targets", name="latest"), _signed("targets", name="v1")])
    assert [t.name for t in repo.get_all_target_metadata_by_name("v1")] == ["v1"]


def test_no_targets_raises():
    resolver, _ = _resolver([_signed("targets", name="other")])
    with pytest.raises(TrustError, match="No signed targets found"):
        resolver.get_digest(SERVER, IMAGE, "token", "latest")


def test_client_error_propagates():
    client = RecordingTrustClient(error=RuntimeError("FAKE_NO_SIGNED_IMAGE_ERROR"))
    with pytest.raises(RuntimeError, match="FAKE_NO_SIGNED_IMAGE_ERROR"):
        DigestResolver(client).get_digest(SERVER, IMAGE, "token", "latest")


def test_signer_with_matching_key():
    _, pem = _ec_pem()
    resolver, _ = _resolver(
        [_signed("targets/wibble", keys={public_key_id(pem)}), _signed("targets/releases")]
    )
    result = resolver.get_digest(SERVER, IMAGE, "token", "latest", [Signer("wibble", pem)])
    assert result == DIGEST_HEX


def test_signer_with_different_key():
    _, pem = _ec_pem()
    _, other = _ec_pem()
    resolver, _ = _resolver(
        [_signed("targets/wibble", keys={public_key_id(other)}), _signed("targets/releases")]
    )
    with pytest.raises(TrustError, match="Public keys are different"):
        resolver.get_digest(SERVER, IMAGE, "token", "latest", [Signer("wibble", pem)])


def test_signer_without_public_key():
    resolver, _ = _resolver([_signed("targets/wibble"), _signed("targets/releases")])
    with pytest.raises(TrustError, match="PublicKey not found in role wibble"):
        resolver.get_digest(SERVER, IMAGE, "token", "latest", [Signer("wibble", "")])


def test_missing_signature_for_role():
    _, pem = _ec_pem()
    resolver, _ = _resolver([_signed("targets/releases")])
    with pytest.raises(TrustError, match="no signature found for role wibble"):
        resolver.get_digest(SERVER, IMAGE, "token", "latest", [Signer("wibble", pem)])


def test_incompatible_digest():
    _, pem = _ec_pem()
    resolver, _ = _resolver(
        [
            _signed("targets/wibble", digest=b"abc", keys={public_key_id(pem)}),
            _signed("targets/releases"),
        ]
    )
    with pytest.raises(TrustError, match="Incompatible digest"):
        resolver.get_digest(SERVER, IMAGE, "token", "latest", [Signer("wibble", pem)])


def test_get_signer_secret():
    _, pem = _ec_pem()
    store = SecretStore(
        [{"metadata": {"name": "signer", "namespace": "default"},
          "data": {"name": b"wibble", "publicKey": pem.encode()}}]
    )
    resolver = DigestResolver(RecordingTrustClient(), store)
    assert resolver.get_signer_secret("default", "signer") == Signer("wibble", pem)


def test_get_signer_secret_empty_field():
    store = SecretStore(
        [{"metadata": {"name": "signer", "namespace": "default"}, "data": {"name": "wibble"}}]
    )
    resolver = DigestResolver(RecordingTrustClient(), store)
    with pytest.raises(TrustError, match="name or publicKey field in secret signer is empty"):
        resolver.get_signer_secret("default", "signer")


def test_get_signer_secret_missing():
    resolver = DigestResolver(RecordingTrustClient(), SecretStore())
    with pytest.raises(LookupError):
        resolver.get_signer_secret("default", "signer")


def test_public_key_id_is_stable_and_distinct():
    _, pem = _ec_pem()
    _, other = _ec_pem()
    key_id = public_key_id(pem)
    assert key_id == public_key_id(pem.encode())
    assert len(key_id) == 64 and all(c in "0123456789abcdef" for c in key_id)
    assert key_id != public_key_id(other)


def test_public_key_id_rsa():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.public_key().public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    assert public_key_id(pem) == public_key_id(pem.decode())


def test_public_key_id_certificate_differs_from_key():
    key, pem = _ec_pem()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "wibble")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(Encoding.PEM)
    assert public_key_id(cert_pem) == public_key_id(cert_pem)
    assert public_key_id(cert_pem) != public_key_id(pem)


@pytest.mark.parametrize(
    "pem",
    ["not a key", "-----BEGIN PRIVATE THING-----\nAAAA\n-----END PRIVATE THING-----\n"],
)
def test_public_key_id_rejects_bad_input(pem):
    with pytest.raises(ValueError):
        public_key_id(pem)