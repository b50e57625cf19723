"""Decryption of the Amtrak train map feed.

The feed body is AES-128-CBC ciphertext, base64 encoded. Its last 88
characters are a second ciphertext, encrypted with a fixed public key, whose
plaintext is a pipe-delimited string starting with the private key for the
body. Both stages derive the AES key with PBKDF2-HMAC-SHA1 over the stage's
key material, using a fixed salt and IV.

The constants below must match the feed byte for byte. A wrong value does
not raise; it silently yields garbage, hence self_check().
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict

from Crypto.Cipher import AES
from Crypto.Hash import SHA1
from Crypto.Protocol.KDF import PBKDF2
from Crypto.Util.Padding import pad, unpad

from .errors import CipherSelfCheckError, DecryptionError

logger = logging.getLogger(__name__)

AGENCY = "amtrak"

PUBLIC_KEY = "69af143c-e8cf-47f8-bf09-fc1f61e5cc33"
SALT = bytes.fromhex("9a3686ac")
IV = bytes.fromhex("c6eb2f7f5c4740c1a2f708fefd947d39")
MASTER_SEGMENT = 88
KDF_ITERATIONS = 1000
KEY_LENGTH = 16


def derive_key(key: str) -> bytes:
    """Derive the 16-byte AES key for a stage's key material."""
    return PBKDF2(
        key.encode("utf-8"),
        SALT,
        dkLen=KEY_LENGTH,
        count=KDF_ITERATIONS,
        hmac_hash_module=SHA1,
    )


def decrypt_segment(content: str, key: str) -> str:
    """
    Decrypt one base64 ciphertext segment.

    Args:
        content: Base64 ciphertext.
        key: Key material (public or private key string).

    Returns:
        UTF-8 plaintext.

    Raises:
        DecryptionError: On malformed base64, bad padding or non UTF-8 output.
    """
    try:
        ciphertext = base64.b64decode("".join(content.split()), validate=True)
        cipher = AES.new(derive_key(key), AES.MODE_CBC, iv=IV)
        plaintext = unpad(cipher.decrypt(ciphertext), AES.block_size)
        return plaintext.decode("utf-8")
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptionError(f"Failed to decrypt segment: {e}", agency=AGENCY) from e


def encrypt_segment(plaintext: str, key: str) -> str:
    """Encrypt plaintext the way the feed does (inverse of decrypt_segment)."""
    cipher = AES.new(derive_key(key), AES.MODE_CBC, iv=IV)
    ciphertext = cipher.encrypt(pad(plaintext.encode("utf-8"), AES.block_size))
    return base64.b64encode(ciphertext).decode("ascii")


def decrypt_payload(data: str) -> str:
    """
    Decrypt a full feed response into its JSON text.

    Raises:
        DecryptionError: If the payload is too short or either stage fails.
    """
    if not data or len(data) <= MASTER_SEGMENT:
        raise DecryptionError(
            f"Response too short ({len(data or '')} chars, expected more than {MASTER_SEGMENT})",
            agency=AGENCY,
        )

    body = data[:-MASTER_SEGMENT]
    tail = data[-MASTER_SEGMENT:]
    private_key = decrypt_segment(tail, PUBLIC_KEY).split("|")[0]
    if not private_key:
        raise DecryptionError("Empty private key in master segment", agency=AGENCY)
    return decrypt_segment(body, private_key)


def decrypt_response(data: str) -> Dict[str, Any]:
    """
    Decrypt and parse a feed response into a GeoJSON feature collection.

    Raises:
        DecryptionError: If decryption fails or the plaintext is not a
            feature collection. A private key that does not unlock the body
            surfaces here as well.
    """
    text = decrypt_payload(data)
    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise DecryptionError(f"Decrypted payload is not JSON: {e}", agency=AGENCY) from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("features"), list):
        raise DecryptionError(
            "Decrypted payload is not a feature collection", agency=AGENCY
        )
    return parsed


def build_payload(plaintext: str, private_key: str, stamp: str = "1700000000000") -> str:
    """Assemble a two-stage payload in the feed's layout."""
    tail = encrypt_segment(f"{private_key}|{stamp}", PUBLIC_KEY)
    if len(tail) != MASTER_SEGMENT:
        raise ValueError(
            f"Master segment is {len(tail)} chars, expected {MASTER_SEGMENT}; "
            "use a shorter private key"
        )
    return encrypt_segment(plaintext, private_key) + tail


# Two-stage sample in the feed's layout, encrypted independently of this
# module (openssl PBKDF2 + aes-128-cbc). The body is encrypted with
# SELF_CHECK_KEY and the tail with PUBLIC_KEY.
SELF_CHECK_KEY = "3f2b8c1e-5d7a-4e9b-a6c4-1b0d9e8f7a65"
SELF_CHECK_PAYLOAD = (
    "l+FMI1+TOT1quLEXfkkKd9sv5I26nvizCUh/n8Eqi5A0Nx5etbLiB3YtxRnhSu9xmPvKenHXHx76ADScf+kGVg=="
    "CpVne2llSxSpTI7X4NzZ14sOH2C8o14SfnuR/Bvg9wfFc/GhQhBuUi1Dh7XWpZO4ehdavEGqKieEIliHPNrX0w=="
)
SELF_CHECK_DOC = {"type": "FeatureCollection", "features": [{"selfCheck": True}]}


def self_check() -> None:
    """
    Decrypt a known two-stage sample with the configured constants.

    Raises:
        CipherSelfCheckError: If the sample does not decrypt to its known
            plaintext.
    """
    try:
        result = decrypt_response(SELF_CHECK_PAYLOAD)
    except (DecryptionError, ValueError) as e:
        raise CipherSelfCheckError(f"Amtrak cipher self-check failed: {e}") from e

    if result != SELF_CHECK_DOC:
        raise CipherSelfCheckError("Amtrak cipher self-check produced unexpected plaintext")
    logger.debug("Amtrak cipher self-check passed")
