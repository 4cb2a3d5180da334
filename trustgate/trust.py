"""Resolution of signed image digests from a content trust repository."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import posixpath
import re
from abc import ABC, abstractmethod
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, load_der_public_key

logger = logging.getLogger(__name__)

CANONICAL_TARGETS_ROLE = "targets"
RELEASES_ROLE = posixpath.join(CANONICAL_TARGETS_ROLE, "releases")

_PEM_BLOCK = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----\s*(.*?)\s*-----END \1-----", re.DOTALL
)


class TrustError(Exception):
    """Content trust information does not satisfy the policy."""


@dataclass(frozen=True)
class Signer:
    """A signer name and the PEM public key it is expected to sign with."""

    signer: str
    public_key: str


@dataclass(frozen=True)
class SignedTarget:
    """A target as signed by one role of a trust repository."""

    name: str
    role: str
    hashes: Mapping[str, bytes] = field(default_factory=dict)
    keys: Collection[str] = field(default_factory=frozenset)


class TrustRepository:
    """An in-memory set of signed targets."""

    def __init__(self, targets: Iterable[SignedTarget] = ()) -> None:
        self._targets = list(targets)

    def get_all_target_metadata_by_name(self, name: str) -> list[SignedTarget]:
        """Return every signed entry for the target called ``name``."""
        return [target for target in self._targets if target.name == name]


class TrustClient(ABC):
    """Opens trust repositories on a trust server."""

    @abstractmethod
    def get_notary_repo(self, server: str, image: str, token: str) -> TrustRepository:
        """Return the trust repository for ``image`` on ``server``."""


class SecretStore:
    """An in-memory store of secret data, keyed by namespace and name."""

    def __init__(self, secrets: Iterable[Mapping[str, Any]] = ()) -> None:
        self._secrets: dict[tuple[str, str], dict[str, bytes]] = {}
        for secret in secrets:
            meta = secret.get("metadata", {})
            key = (meta.get("namespace", ""), meta.get("name", ""))
            self._secrets[key] = {
                k: v.encode() if isinstance(v, str) else bytes(v)
                for k, v in (secret.get("data") or {}).items()
            }

    def get_secret_data(self, namespace: str, name: str) -> dict[str, bytes]:
        try:
            return dict(self._secrets[(namespace, name)])
        except KeyError:
            raise LookupError(
                f'secrets "{name}" not found in namespace "{namespace}"'
            ) from None


def _canonical_key_id(keytype: str, public: bytes) -> str:
    document = {
        "keytype": keytype,
        "keyval": {"private": None, "public": base64.b64encode(public).decode()},
    }
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()


def _validate_certificate(cert: x509.Certificate) -> None:
    now = datetime.now(timezone.utc)
    not_before = cert.not_valid_before.replace(tzinfo=timezone.utc)
    not_after = cert.not_valid_after.replace(tzinfo=timezone.utc)
    if now < not_before or now > not_after:
        raise ValueError("certificate is expired or not yet valid")
    if isinstance(cert.signature_hash_algorithm, hashes.SHA1):
        raise ValueError("certificate uses an insecure signature algorithm")
    key = cert.public_key()
    if isinstance(key, rsa.RSAPublicKey) and key.key_size < 2048:
        raise ValueError("RSA bit length is too short")


def public_key_id(pem: str | bytes) -> str:
    """Return the trust key ID of a PEM public key or certificate."""
    text = pem.decode() if isinstance(pem, bytes) else pem
    match = _PEM_BLOCK.search(text)
    if match is None:
        raise ValueError("no valid public key found")
    block_type, body = match.group(1), match.group(2)
    try:
        der = base64.b64decode("".join(body.split()), validate=True)
    except binascii.Error:
        raise ValueError("no valid public key found") from None

    if block_type == "CERTIFICATE":
        cert = x509.load_der_x509_certificate(der)
        _validate_certificate(cert)
        key = cert.public_key()
        cert_pem = cert.public_bytes(Encoding.PEM)
        if isinstance(key, ec.EllipticCurvePublicKey):
            return _canonical_key_id("ecdsa-x509", cert_pem)
        if isinstance(key, rsa.RSAPublicKey):
            return _canonical_key_id("rsa-x509", cert_pem)
        raise ValueError("unsupported public key type")

    if block_type == "PUBLIC KEY":
        key = load_der_public_key(der)
        if isinstance(key, ec.EllipticCurvePublicKey):
            return _canonical_key_id("ecdsa", der)
        if isinstance(key, rsa.RSAPublicKey):
            return _canonical_key_id("rsa", der)
        raise ValueError("unsupported public key type")

    raise ValueError(
        f'unsupported PEM block type "{block_type}", expected certificate or public key'
    )


@dataclass
class _SignerState:
    signer: Signer
    found: bool = False


class DigestResolver:
    """Finds the released digest of an image and checks required signers."""

    def __init__(self, trust: TrustClient, secrets: SecretStore | None = None) -> None:
        self.trust = trust
        self.secrets = secrets if secrets is not None else SecretStore()

    def get_digest(
        self,
        server: str,
        image: str,
        notary_token: str,
        target_name: str,
        signers: Sequence[Signer] = (),
    ) -> str:
        """Return the hex sha256 digest of the released target ``target_name``."""
        repo = self.trust.get_notary_repo(server, image, notary_token)

        by_role: dict[str, _SignerState] = {}
        for signer in signers:
            role = posixpath.normpath(f"{CANONICAL_TARGETS_ROLE}/{signer.signer}")
            by_role[role] = _SignerState(signer)

        targets = repo.get_all_target_metadata_by_name(target_name)
        if not targets:
            raise TrustError("No signed targets found")

        digest = b""
        for target in targets:
            if target.role in (CANONICAL_TARGETS_ROLE, RELEASES_ROLE):
                digest = target.hashes.get("sha256", b"")

        if not by_role:
            logger.info("no signers required, returning digest %s", digest.hex())
            return digest.hex()

        for target in targets:
            state = by_role.get(target.role)
            if state is None:
                continue
            if not state.signer.public_key:
                logger.info("PublicKey not found in role %s", state.signer.signer)
                raise TrustError(f"PublicKey not found in role {state.signer.signer}")
            key_id = public_key_id(state.signer.public_key)
            if key_id not in target.keys:
                logger.info("Key %s not found in role key list: %s", key_id, list(target.keys))
                raise TrustError("Public keys are different")
            state.found = True
            if digest != target.hashes.get("sha256", b""):
                raise TrustError("Incompatible digest")

        for state in by_role.values():
            if not state.found:
                raise TrustError(f"no signature found for role {state.signer.signer}")

        return digest.hex()

    def get_signer_secret(self, namespace: str, signer_secret_name: str) -> Signer:
        """Read the signer name and public key held in a secret."""
        data = self.secrets.get_secret_data(namespace, signer_secret_name)
        signer = data.get("name", b"").decode()
        public_key = data.get("publicKey", b"").decode()
        if not signer or not public_key:
            raise TrustError(
                f"name or publicKey field in secret {signer_secret_name} is empty"
            )
        return Signer(signer=signer, public_key=public_key)