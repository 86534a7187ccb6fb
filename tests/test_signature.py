import hashlib

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from apkroot.signature import SignatureError, rsa_sign_digest, rsa_verify_digest


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_file(tmp_path, rsa_key):
    path = tmp_path / "key.rsa"
    path.write_bytes(
        rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
def public_pem(rsa_key):
    return rsa_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


DIGEST = hashlib.sha256(b"message").digest()


def test_sign_and_verify_roundtrip(key_file, public_pem):
    sig = rsa_sign_digest(DIGEST, hashes.SHA256(), key_file, "")
    rsa_verify_digest(DIGEST, hashes.SHA256(), sig, public_pem)
    other = hashlib.sha256(b"other").digest()
    with pytest.raises(SignatureError, match="verify PKCS1v15 signature"):
        rsa_verify_digest(other, hashes.SHA256(), sig, public_pem)


def test_signature_is_deterministic(key_file):
    first = rsa_sign_digest(DIGEST, hashes.SHA256(), key_file, "")
    second = rsa_sign_digest(DIGEST, hashes.SHA256(), key_file, "")
    assert first == second


def test_tampered_signature_fails(key_file, public_pem):
    sig = bytearray(rsa_sign_digest(DIGEST, hashes.SHA256(), key_file, ""))
    sig[0] ^= 0xFF
    with pytest.raises(SignatureError, match="verify PKCS1v15 signature"):
        rsa_verify_digest(DIGEST, hashes.SHA256(), bytes(sig), public_pem)


def test_sha1_signing_refused(key_file):
    digest = hashlib.sha1(b"message").digest()
    with pytest.raises(SignatureError, match="creating sha1 signatures not supported"):
        rsa_sign_digest(digest, hashes.SHA1(), key_file, "")


def test_wrong_digest_length(key_file, public_pem):
    with pytest.raises(SignatureError, match="digest has unexpected length"):
        rsa_sign_digest(DIGEST[:-1], hashes.SHA256(), key_file, "")
    with pytest.raises(SignatureError, match="digest has unexpected length"):
        rsa_verify_digest(DIGEST[:-1], hashes.SHA256(), b"", public_pem)


def test_no_pem_block(tmp_path):
    bad = tmp_path / "bad.rsa"
    bad.write_text("not a key")
    with pytest.raises(SignatureError, match="no PEM block found"):
        rsa_sign_digest(DIGEST, hashes.SHA256(), bad, "")
    with pytest.raises(SignatureError, match="no PEM block found"):
        rsa_verify_digest(DIGEST, hashes.SHA256(), b"sig", b"not a key")


def test_missing_key_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        rsa_sign_digest(DIGEST, hashes.SHA256(), tmp_path / "absent.rsa", "")


def test_encrypted_key(tmp_path, rsa_key, public_pem):
    passphrase = "password"
    path = tmp_path / "enc.rsa"
    path.write_bytes(
        rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.BestAvailableEncryption(passphrase.encode()),
        )
    )
    with pytest.raises(SignatureError, match="no passphrase was provided"):
        rsa_sign_digest(DIGEST, hashes.SHA256(), path, "")
    with pytest.raises(SignatureError, match="decrypt private key PEM block"):
        rsa_sign_digest(DIGEST, hashes.SHA256(), path, "secret")
    sig = rsa_sign_digest(DIGEST, hashes.SHA256(), path, passphrase)
    rsa_verify_digest(DIGEST, hashes.SHA256(), sig, public_pem)


def test_pkcs8_key_rejected(tmp_path, rsa_key):
    path = tmp_path / "pkcs8.pem"
    path.write_bytes(
        rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    with pytest.raises(SignatureError, match="parse PKCS1 private key"):
        rsa_sign_digest(DIGEST, hashes.SHA256(), path, "")


def test_non_rsa_public_key(key_file):
    ec_public = ec.generate_private_key(ec.SECP256R1()).public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    sig = rsa_sign_digest(DIGEST, hashes.SHA256(), key_file, "")
    with pytest.raises(SignatureError, match="key is not an RSA key"):
        rsa_verify_digest(DIGEST, hashes.SHA256(), sig, ec_public)


def test_sha512_roundtrip(key_file, public_pem):
    digest = hashlib.sha512(b"message").digest()
    sig = rsa_sign_digest(digest, hashes.SHA512(), key_file, "")
    rsa_verify_digest(digest, hashes.SHA512(), sig, public_pem)
    with pytest.raises(SignatureError, match="verify PKCS1v15 signature"):
        rsa_verify_digest(
            hashlib.sha256(b"message").digest(), hashes.SHA256(), sig, public_pem
        )