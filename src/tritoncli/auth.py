"""HTTP-Signature request signing for CloudAPI.

CloudAPI authenticates every request by an ``Authorization: Signature ...``
header computed over the ``Date`` header with the account's SSH key. The key
is named in profiles by its fingerprint (``SHA256:...`` or MD5 hex pairs) and
is found either in a private key file under ``~/.ssh`` (loaded with
``cryptography``) or in a running ssh-agent (reached through ``paramiko``).
Private key bytes are never persisted by tritoncli.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import paramiko
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from .errors import SigningError, TritonError

LOGGER = logging.getLogger(__name__)

_CURVE_HASHES: dict[str, hashes.HashAlgorithm] = {
    "secp256r1": hashes.SHA256(),
    "secp384r1": hashes.SHA384(),
    "secp521r1": hashes.SHA512(),
}
_ECDSA_ALGORITHMS = {
    "ecdsa-sha2-nistp256": "ecdsa-sha256",
    "ecdsa-sha2-nistp384": "ecdsa-sha384",
    "ecdsa-sha2-nistp521": "ecdsa-sha512",
}


class Signer(Protocol):
    """Anything that can produce an HTTP-Signature for a string."""

    fingerprint_md5: str
    algorithm: str

    def sign(self, data: bytes) -> bytes:
        """Return the raw signature over *data*."""


def md5_fingerprint(blob: bytes) -> str:
    """Return the colon separated MD5 fingerprint of an SSH public key blob."""
    digest = hashlib.md5(blob).hexdigest()  # noqa: S324 - key fingerprint, not security
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def sha256_fingerprint(blob: bytes) -> str:
    """Return the ``SHA256:<base64>`` fingerprint of an SSH public key blob."""
    digest = base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii")
    return "SHA256:" + digest.rstrip("=")


def fingerprint_matches(key_id: str, blob: bytes) -> bool:
    """Return ``True`` when *key_id* names the key whose public blob is *blob*."""
    wanted = key_id.strip()
    if wanted.upper().startswith("SHA256:"):
        return sha256_fingerprint(blob)[7:] == wanted[7:].rstrip("=")
    if wanted.upper().startswith("MD5:"):
        wanted = wanted[4:]
    return md5_fingerprint(blob) == wanted.lower()


def key_id_path(account: str, fingerprint_md5: str, user: str | None = None) -> str:
    """Return the ``keyId`` value CloudAPI expects in the signature header."""
    if user:
        return f"/{account}/users/{user}/keys/{fingerprint_md5}"
    return f"/{account}/keys/{fingerprint_md5}"


def authorization_header(signer: Signer, *, account: str, user: str | None, date: str) -> str:
    """Sign ``date: <date>`` and return the ``Authorization`` header value."""
    try:
        raw = signer.sign(f"date: {date}".encode())
    except SigningError:
        raise
    except Exception as exc:
        raise SigningError(cause=exc) from exc
    signature = base64.b64encode(raw).decode("ascii")
    key_id = key_id_path(account, signer.fingerprint_md5, user)
    return (
        f'Signature keyId="{key_id}",algorithm="{signer.algorithm}",'
        f'headers="date",signature="{signature}"'
    )


@dataclass
class PrivateKeySigner:
    """Sign with a private key loaded from disk."""

    key: object
    fingerprint_md5: str
    algorithm: str
    path: Path | None = None

    @classmethod
    def from_private_key(cls, key: object, *, path: Path | None = None) -> PrivateKeySigner:
        """Wrap a ``cryptography`` private key object."""
        public = key.public_key()  # type: ignore[attr-defined]
        blob = _public_blob(public)
        if isinstance(key, rsa.RSAPrivateKey):
            algorithm = "rsa-sha256"
        elif isinstance(key, ec.EllipticCurvePrivateKey):
            curve_hash = _CURVE_HASHES.get(key.curve.name)
            if curve_hash is None:
                raise SigningError(f"unsupported ECDSA curve: {key.curve.name}")
            algorithm = f"ecdsa-{curve_hash.name}"
        elif isinstance(key, ed25519.Ed25519PrivateKey):
            algorithm = "ed25519-sha512"
        else:
            raise SigningError(f"unsupported key type: {type(key).__name__}")
        return cls(key=key, fingerprint_md5=md5_fingerprint(blob), algorithm=algorithm, path=path)

    def sign(self, data: bytes) -> bytes:
        """Return the raw signature over *data*."""
        key = self.key
        if isinstance(key, rsa.RSAPrivateKey):
            return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        if isinstance(key, ec.EllipticCurvePrivateKey):
            return key.sign(data, ec.ECDSA(_CURVE_HASHES[key.curve.name]))
        if isinstance(key, ed25519.Ed25519PrivateKey):
            return key.sign(data)
        raise SigningError(f"unsupported key type: {type(key).__name__}")


class AgentSigner:
    """Delegate signing to a key held by ssh-agent."""

    def __init__(self, agent_key: paramiko.AgentKey, agent: paramiko.Agent | None = None) -> None:
        """Wrap one agent identity; *agent* keeps the agent connection open."""
        self._key = agent_key
        self._agent = agent
        blob = agent_key.asbytes()
        self.fingerprint_md5 = md5_fingerprint(blob)
        key_type = agent_key.get_name()
        if key_type == "ssh-rsa":
            self.algorithm = "rsa-sha256"
        elif key_type in _ECDSA_ALGORITHMS:
            self.algorithm = _ECDSA_ALGORITHMS[key_type]
        elif key_type == "ssh-ed25519":
            self.algorithm = "ed25519-sha512"
        else:
            raise SigningError(f"unsupported ssh-agent key type: {key_type}")
        self._key_type = key_type

    def sign(self, data: bytes) -> bytes:
        """Ask the agent to sign *data* and unwrap the SSH signature blob."""
        algorithm = "rsa-sha2-256" if self._key_type == "ssh-rsa" else None
        try:
            blob = self._key.sign_ssh_data(data, algorithm=algorithm)
        except paramiko.SSHException as exc:
            raise SigningError("ssh-agent refused to sign the request", cause=exc) from exc
        message = paramiko.Message(bytes(blob))
        message.get_text()
        signature = message.get_binary()
        if self._key_type in _ECDSA_ALGORITHMS:
            parts = paramiko.Message(signature)
            r = parts.get_mpint()
            s = parts.get_mpint()
            return encode_dss_signature(r, s)
        return signature


def load_key_file(path: Path) -> object | None:
    """Load an unencrypted private key from *path* (OpenSSH or PEM format).

    Returns ``None`` when the file is not a usable key. Encrypted keys are
    skipped; they can be used through ssh-agent instead.
    """
    try:
        data = path.read_bytes()
    except OSError:
        return None
    loaders = (serialization.load_ssh_private_key, serialization.load_pem_private_key)
    for loader in loaders:
        try:
            return loader(data, password=None)
        except TypeError:
            LOGGER.debug("skipping passphrase protected key %s", path)
            return None
        except (ValueError, UnsupportedAlgorithm):
            continue
    return None


def _public_blob(public_key: object) -> bytes:
    line = public_key.public_bytes(  # type: ignore[attr-defined]
        serialization.Encoding.OpenSSH,
        serialization.PublicFormat.OpenSSH,
    )
    return base64.b64decode(line.split()[1])


def public_key_fingerprint(line: str) -> str:
    """Return the MD5 fingerprint of an OpenSSH public key line."""
    try:
        public_key = serialization.load_ssh_public_key(line.strip().encode("utf-8"))
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise TritonError(f"invalid SSH public key: {exc}", cause=exc) from exc
    return md5_fingerprint(_public_blob(public_key))


def _candidate_key_files(ssh_dir: Path) -> Iterable[Path]:
    if not ssh_dir.is_dir():
        return []
    candidates = []
    for pub in sorted(ssh_dir.glob("*.pub")):
        private = pub.with_suffix("")
        if private.is_file():
            candidates.append(private)
    return candidates


def find_signer(
    key_id: str,
    *,
    ssh_dir: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Signer:
    """Locate the key named by *key_id* on disk or in ssh-agent."""
    resolved_env = os.environ if env is None else env
    directory = ssh_dir or Path("~/.ssh").expanduser()

    for path in _candidate_key_files(directory):
        key = load_key_file(path)
        if key is None:
            continue
        try:
            blob = _public_blob(key.public_key())  # type: ignore[attr-defined]
        except (ValueError, AttributeError):
            continue
        if fingerprint_matches(key_id, blob):
            LOGGER.debug("signing with key file %s", path)
            return PrivateKeySigner.from_private_key(key, path=path)

    if resolved_env.get("SSH_AUTH_SOCK"):
        agent = paramiko.Agent()
        for agent_key in agent.get_keys():
            if fingerprint_matches(key_id, agent_key.asbytes()):
                LOGGER.debug("signing with ssh-agent key %s", key_id)
                return AgentSigner(agent_key, agent)
        agent.close()

    raise SigningError(
        f'could not find SSH key "{key_id}" in {directory} or in ssh-agent '
        "(is the key loaded with ssh-add?)"
    )


__all__ = [
    "AgentSigner",
    "PrivateKeySigner",
    "Signer",
    "authorization_header",
    "find_signer",
    "fingerprint_matches",
    "key_id_path",
    "load_key_file",
    "md5_fingerprint",
    "public_key_fingerprint",
    "sha256_fingerprint",
]
