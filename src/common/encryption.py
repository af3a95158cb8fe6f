# src/common/encryption.py

"""
Encryption utilities for delivering request secrets to the oracle network.

We use ECIES over secp256k1, the scheme the oracle nodes decrypt with:
    * Generate an ephemeral secp256k1 keypair.
    * ECDH(ephemeral_private, reader_public) -> shared x-coordinate.
    * SHA-512(shared) -> [32-byte AES-256-CBC key][32-byte HMAC-SHA256 key].
    * Encrypt the plaintext with AES-256-CBC (PKCS7) under a random IV.
    * MAC = HMAC-SHA256(mac_key, iv || ephemeral_pub_uncompressed || ciphertext).
    * Pack [16-byte iv][33-byte compressed ephemeral pub][32-byte mac][ciphertext].

Inline secrets are additionally signed by the requester: the keccak-256 hash
of the message is signed with the requester's Ethereum key and the
{"message", "signature"} JSON is what gets encrypted.

This module does NOT log or persist plaintext anywhere.
"""

from __future__ import annotations

import hashlib
import json
import os
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from eth_account import Account
from eth_utils import keccak, to_hex

from common.errors import CryptoError


IV_SIZE = 16
COMPRESSED_KEY_SIZE = 33
MAC_SIZE = 32

Message = Union[str, bytes]


# -------------------------------------------------------------------------
# Key parsing
# -------------------------------------------------------------------------


def _strip_hex(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def load_public_key(public_key: Union[str, bytes]) -> ec.EllipticCurvePublicKey:
    """
    Parse a secp256k1 public key.

    Accepts hex (optionally 0x-prefixed) or raw bytes, in any of:
      - 64 bytes: x || y without the 0x04 prefix (as returned by the oracle contract)
      - 65 bytes: uncompressed SEC1 point
      - 33 bytes: compressed SEC1 point
    """
    try:
        raw = bytes.fromhex(_strip_hex(public_key)) if isinstance(public_key, str) else bytes(public_key)
    except ValueError as e:
        raise CryptoError("Public key is not valid hex") from e

    if len(raw) == 64:
        raw = b"\x04" + raw

    if len(raw) not in (33, 65):
        raise CryptoError(f"Public key has unsupported length {len(raw)}")

    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), raw)
    except ValueError as e:
        raise CryptoError("Public key is not a valid secp256k1 point") from e


def load_private_key(private_key: str) -> ec.EllipticCurvePrivateKey:
    try:
        secret = int(_strip_hex(private_key), 16)
        return ec.derive_private_key(secret, ec.SECP256K1())
    except ValueError as e:
        raise CryptoError("Private key is not a valid secp256k1 scalar") from e


def public_key_bytes(key: ec.EllipticCurvePublicKey, compressed: bool = False) -> bytes:
    fmt = (
        serialization.PublicFormat.CompressedPoint
        if compressed
        else serialization.PublicFormat.UncompressedPoint
    )
    return key.public_bytes(serialization.Encoding.X962, fmt)


# -------------------------------------------------------------------------
# ECIES helpers
# -------------------------------------------------------------------------


def _derive_keys(
    private_key: ec.EllipticCurvePrivateKey, peer: ec.EllipticCurvePublicKey
) -> tuple[bytes, bytes]:
    shared = private_key.exchange(ec.ECDH(), peer)
    digest = hashlib.sha512(shared).digest()
    return digest[:32], digest[32:]


def _mac(mac_key: bytes, data: bytes) -> bytes:
    h = hmac.HMAC(mac_key, hashes.SHA256())
    h.update(data)
    return h.finalize()


def encrypt(public_key: Union[str, bytes], message: Message) -> bytes:
    """
    Encrypts `message` for the holder of `public_key`.

    Returns the packed ciphertext:
    iv (16) || compressed ephemeral public key (33) || mac (32) || ciphertext.
    """
    reader = load_public_key(public_key)
    plaintext = message.encode("utf-8") if isinstance(message, str) else bytes(message)

    ephemeral = ec.generate_private_key(ec.SECP256K1())
    enc_key, mac_key = _derive_keys(ephemeral, reader)

    iv = os.urandom(IV_SIZE)
    padder = sym_padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    ephemeral_pub = ephemeral.public_key()
    mac = _mac(mac_key, iv + public_key_bytes(ephemeral_pub) + ciphertext)

    return iv + public_key_bytes(ephemeral_pub, compressed=True) + mac + ciphertext


def decrypt(private_key: str, packed: bytes) -> bytes:
    """
    Decrypts a blob produced by `encrypt` with the reader's private key.

    The MAC is verified before decryption; any mismatch is a CryptoError.
    """
    header = IV_SIZE + COMPRESSED_KEY_SIZE + MAC_SIZE
    if len(packed) <= header:
        raise CryptoError("Ciphertext too short")

    iv = packed[:IV_SIZE]
    ephemeral_pub = load_public_key(packed[IV_SIZE : IV_SIZE + COMPRESSED_KEY_SIZE])
    mac = packed[IV_SIZE + COMPRESSED_KEY_SIZE : header]
    ciphertext = packed[header:]

    enc_key, mac_key = _derive_keys(load_private_key(private_key), ephemeral_pub)

    h = hmac.HMAC(mac_key, hashes.SHA256())
    h.update(iv + public_key_bytes(ephemeral_pub) + ciphertext)
    try:
        h.verify(mac)
    except InvalidSignature as e:
        raise CryptoError("Ciphertext MAC mismatch") from e

    try:
        decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = sym_padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        # Never leak plaintext; only raise general error
        raise CryptoError("Decryption failed") from e


# -------------------------------------------------------------------------
# Signed payloads for inline secrets
# -------------------------------------------------------------------------


def sign_message(private_key: str, message: str) -> str:
    """
    Signs keccak256(message) with an Ethereum private key.

    Returns the 65-byte r || s || v signature as 0x-prefixed hex.
    """
    try:
        signed = Account.unsafe_sign_hash(keccak(text=message), private_key)
    except (ValueError, TypeError) as e:
        raise CryptoError("Signer private key is invalid") from e
    return to_hex(signed.signature)


def sign_and_encrypt(private_key: str, public_key: Union[str, bytes], message: str) -> bytes:
    """
    Wraps `message` with the requester's signature and encrypts the
    resulting {"message", "signature"} JSON for `public_key`.
    """
    payload = {
        "message": message,
        "signature": sign_message(private_key, message),
    }
    return encrypt(public_key, json.dumps(payload, separators=(",", ":")))
