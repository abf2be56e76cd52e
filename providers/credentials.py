"""Credential generation shared by the secrets-store implementations."""

import secrets
import string

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

PASSWORD_ALPHABET = string.ascii_letters + string.digits + string.punctuation
MIN_PASSWORD_LENGTH = 16


def generate_password(length: int, exclude_characters: str = "") -> str:
    """Generate a random password without any of ``exclude_characters``.

    The result always mixes lower-case, upper-case and digits.

    Raises:
        ValueError: If ``length`` is below the minimum.
    """
    if length < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password length must be at least {MIN_PASSWORD_LENGTH}, got {length}")

    alphabet = "".join(c for c in PASSWORD_ALPHABET if c not in exclude_characters)
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if (
            any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)
        ):
            return password


def generate_ssh_key_pair(key_size: int = 2048) -> tuple[str, str]:
    """Generate an RSA key pair.

    Returns:
        ``(private_key_pem, public_key_openssh)``
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_openssh = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
        .decode("utf-8")
    )
    return private_pem, public_openssh


def public_key_from_private(private_key_pem: str) -> str:
    """OpenSSH public key of a stored PEM private key."""
    private_key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
        .decode("utf-8")
    )
