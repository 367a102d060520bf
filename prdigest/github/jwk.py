"""RSA private key → JSON Web Key conversion.

The App's PEM is parsed into its raw RSA integers, and each integer is
encoded as unsigned big-endian bytes in unpadded base64url (RFC 7518 §6.3).
The JWK is then handed to the signer, which keeps the signing step
independent of how the key was stored.
"""

import base64

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from prdigest.core.errors import ConfigurationError


def int_to_base64url(value: int) -> str:
    """Encode a non-negative integer as unpadded base64url.

    The integer is written as big-endian bytes with no sign byte; its hex
    form is left-padded to an even number of digits first.
    """
    if value < 0:
        raise ValueError("JWK integers must be non-negative")
    hex_digits = format(value, "x")
    if len(hex_digits) % 2:
        hex_digits = "0" + hex_digits
    raw = bytes.fromhex(hex_digits)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def load_rsa_private_key(pem: str) -> rsa.RSAPrivateKey:
    """Parse a PEM-encoded RSA private key (PKCS#1 or PKCS#8).

    Literal ``\\n`` escapes are normalised so single-line env values work.
    """
    if not pem or not pem.strip():
        raise ConfigurationError("GITHUB_PRIVATE_KEY is empty")

    formatted = pem.replace("\\n", "\n").strip()
    try:
        key = serialization.load_pem_private_key(formatted.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(f"GITHUB_PRIVATE_KEY is not a valid PEM private key: {exc}") from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError("GITHUB_PRIVATE_KEY must be an RSA private key")
    return key


def rsa_private_key_to_jwk(pem: str) -> dict:
    """Return the RS256 signing JWK for a PEM-encoded RSA private key."""
    numbers = load_rsa_private_key(pem).private_numbers()
    public = numbers.public_numbers

    return {
        "kty": "RSA",
        "alg": "RS256",
        "use": "sig",
        "key_ops": ["sign"],
        "n": int_to_base64url(public.n),
        "e": int_to_base64url(public.e),
        "d": int_to_base64url(numbers.d),
        "p": int_to_base64url(numbers.p),
        "q": int_to_base64url(numbers.q),
        "dp": int_to_base64url(numbers.dmp1),
        "dq": int_to_base64url(numbers.dmq1),
        "qi": int_to_base64url(numbers.iqmp),
    }
