"""RSA PKCS#1 v1.5 signing and verification of message digests."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed


class SignatureError(Exception):
    """Raised when a digest cannot be signed or a signature does not verify."""


_PEM_RE = re.compile(
    rb"-----BEGIN ([^\r\n-]+)-----\r?\n(.*?)-----END \1-----", re.DOTALL
)


@dataclass
class _PemBlock:
    type: str
    data: bytes
    raw: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def encrypted(self) -> bool:
        return "DEK-Info" in self.headers


def _decode_pem(data: bytes) -> _PemBlock | None:
    match = _PEM_RE.search(data)
    if match is None:
        return None
    lines = match.group(2).decode("ascii", "replace").splitlines()
    headers: dict[str, str] = {}
    if lines and ":" in lines[0]:
        while lines and lines[0].strip():
            key, _, value = lines.pop(0).partition(":")
            headers[key.strip()] = value.strip()
        if lines:
            lines.pop(0)
    try:
        der = base64.b64decode("".join(line.strip() for line in lines), validate=True)
    except (binascii.Error, ValueError):
        return None
    return _PemBlock(match.group(1).decode("ascii"), der, match.group(0), headers)


def _load_private_key(block: _PemBlock, passphrase: str) -> rsa.RSAPrivateKey:
    if block.encrypted:
        if not passphrase:
            raise SignatureError("key is encrypted but no passphrase was provided")
        try:
            key = serialization.load_pem_private_key(block.raw, passphrase.encode())
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise SignatureError(f"decrypt private key PEM block: {err}") from err
    else:
        if block.type != "RSA PRIVATE KEY":
            raise SignatureError(
                f"parse PKCS1 private key: unexpected PEM type {block.type!r}"
            )
        try:
            key = serialization.load_der_private_key(block.data, None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise SignatureError(f"parse PKCS1 private key: {err}") from err
    if block.type != "RSA PRIVATE KEY" or not isinstance(key, rsa.RSAPrivateKey):
        raise SignatureError("parse PKCS1 private key: not an RSA PKCS1 key")
    return key


def rsa_sign_digest(
    digest: bytes,
    digest_type: hashes.HashAlgorithm,
    key_file: str | Path,
    passphrase: str = "",
) -> bytes:
    """Sign ``digest`` with the PKCS#1 RSA key in a PEM file, which may be encrypted."""
    if isinstance(digest_type, hashes.SHA1):
        raise SignatureError("creating sha1 signatures not supported")
    if len(digest) != digest_type.digest_size:
        raise SignatureError("digest has unexpected length")

    block = _decode_pem(Path(key_file).read_bytes())
    if block is None:
        raise SignatureError("no PEM block found")

    key = _load_private_key(block, passphrase)
    try:
        return key.sign(digest, padding.PKCS1v15(), Prehashed(digest_type))
    except (ValueError, TypeError) as err:
        raise SignatureError(f"signing: {err}") from err


def rsa_verify_digest(
    digest: bytes,
    digest_type: hashes.HashAlgorithm,
    signature: bytes,
    public_key: bytes,
) -> None:
    """Verify a PKCS#1 v1.5 signature over ``digest`` with a PEM PKIX public key."""
    if len(digest) != digest_type.digest_size:
        raise SignatureError("digest has unexpected length")

    block = _decode_pem(public_key)
    if block is None:
        raise SignatureError("no PEM block found")

    try:
        key = serialization.load_der_public_key(block.data)
    except (ValueError, UnsupportedAlgorithm) as err:
        raise SignatureError(f"parse PKIX public key: {err}") from err

    if not isinstance(key, rsa.RSAPublicKey):
        raise SignatureError("key is not an RSA key")

    try:
        key.verify(signature, digest, padding.PKCS1v15(), Prehashed(digest_type))
    except InvalidSignature as err:
        raise SignatureError("verify PKCS1v15 signature: verification error") from err