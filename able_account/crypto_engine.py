"""
Able Account Crypto Engine - Core Cryptographic Operations
Handles : Key derivation, blob encryption/decryption, random generation
"""
import os
import hashlib
from typing import Optional, Tuple
from argon2 import low_level
from argon2.exceptions import HashingError
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from able_account import config

MIN_PBKDF2_ITERATIONS = 300_000
PBKDF2_ITERATIONS = config.PBKDF2_ITERATIONS
KEY_LENGTH = 32                 # AES-256
NONCE_LENGTH = 12               # 96-bit GCM nonce
MIN_MEMORY_KB = 8 * 1024        # 8 MB
MAX_MEMORY_KB = 1_048_576       # 1 GB hard cap


class AuthenticationFailure(Exception):
    """Raised when authenticated decryption fails (wrong key or corrupted data)"""
    pass


"""
==========================================================================
PART A : Random Generations
==========================================================================
"""

#Function to generate salt
def generate_salt(length: int = 16) -> bytes:
    """
    Generate a secure random salt for key derivation.

    Args:
        length: salt length in bytes (default: 16 bytes = 128 bits)

    Returns:
        Random salt as bytes

    Security:
        - A fresh salt is drawn every time a key is (re)derived for the store
        - Same passphrase + different salt = unrelated key
    """
    return os.urandom(length)

#Function to generate nonce
def generate_nonce(length: int = NONCE_LENGTH) -> bytes:
    """
    Generate a secure random nonce for AES-GCM.

    Security:
        - MUST be unique for every encryption with the same key
        - Always drawn from the CSPRNG, never derived from the plaintext
    """
    return os.urandom(length)


"""
==========================================================================
PART B : Key Derivation
==========================================================================
"""

# function to derive the store key
def derive_key(
    passphrase: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """
    Derive the 256-bit store key from a passphrase with PBKDF2-HMAC-SHA256.

    Args:
        passphrase: user passphrase (UTF-8 string)
        salt: random salt stored next to the ciphertext
        iterations: PBKDF2 iteration count (default: 600,000)

    Returns:
        32-byte symmetric key

    Security:
        - Deliberately slow; the unlock delay is the cost of every guess
        - Deterministic for a given (passphrase, salt)
    """
    if not isinstance(iterations, int) or iterations < MIN_PBKDF2_ITERATIONS:
        raise ValueError(
            f"PBKDF2 iterations must be an integer >= {MIN_PBKDF2_ITERATIONS}"
        )
    if not salt:
        raise ValueError("Key derivation requires a non-empty salt")

    if isinstance(passphrase, str):
        passphrase_bytes = passphrase.encode("utf-8")
    else:
        passphrase_bytes = passphrase

    return hashlib.pbkdf2_hmac(
        "sha256",
        passphrase_bytes,
        salt,
        iterations,
        dklen=KEY_LENGTH
    )

def derive_key_argon2id(
    passphrase: str,
    salt: bytes,
    time_cost: int = 3,
    memory_cost: int = 65536,  # 64 MB in KB
    parallelism: int = 1
) -> bytes:
    """
    Derive the store key with Argon2id (memory-hard alternative to PBKDF2).
    """
    if not isinstance(memory_cost, int):
        raise ValueError("Argon2 memory_cost must be an integer")

    if memory_cost * parallelism > MAX_MEMORY_KB:
        raise ValueError(
            f"Argon2: Total memory usage ({memory_cost * parallelism} KB) exceeds "
            f"system limit ({MAX_MEMORY_KB} KB). Reduce memory_cost or parallelism."
        )

    if memory_cost < MIN_MEMORY_KB:
        raise ValueError("Argon2 memory_cost too low (<8MB)")

    try:
        return low_level.hash_secret_raw(
            secret=passphrase.encode("utf-8"),
            salt=salt,
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=KEY_LENGTH,
            type=low_level.Type.ID
        )
    except HashingError as e:
        raise RuntimeError(f"Argon2id key derivation failed: {e}")

def derive_key_from_params(passphrase: str, salt: bytes, kdf: dict) -> bytes:
    """
    Derive a key using the KDF parameters recorded in an envelope.

    Args:
        kdf: {"algorithm": "pbkdf2-sha256", "iterations": int}
             or {"algorithm": "argon2id", "time_cost", "memory_cost", "parallelism"}
    """
    algorithm = kdf.get("algorithm", "pbkdf2-sha256")

    if algorithm == "pbkdf2-sha256":
        return derive_key(
            passphrase,
            salt,
            iterations=int(kdf.get("iterations", PBKDF2_ITERATIONS))
        )

    if algorithm == "argon2id":
        return derive_key_argon2id(
            passphrase,
            salt,
            time_cost=int(kdf.get("time_cost", 3)),
            memory_cost=int(kdf.get("memory_cost", 65536)),
            parallelism=int(kdf.get("parallelism", 1))
        )

    raise ValueError(f"Unsupported KDF algorithm: {algorithm}")


"""
=============================================================================
 PART C: ENCRYPTION/DECRYPTION (AES-256-GCM)
=============================================================================
"""

# function to encrypt the serialized database
def encrypt_blob(
        plaintext: bytes,
        key: bytes,
        associated_data: Optional[bytes] = None
) -> Tuple[bytes, bytes]:
    """
    Encrypt a byte blob with AES-256-GCM.

    Returns:
        (nonce, ciphertext) where ciphertext carries the 16-byte tag at its end
    """
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError("AES-256-GCM key must be 32 bytes")
    if not isinstance(plaintext, (bytes, bytearray)):
        raise TypeError("Encryption Failed: plaintext must be bytes")

    nonce = generate_nonce()
    cipher = AESGCM(bytes(key))
    ciphertext = cipher.encrypt(nonce, bytes(plaintext), associated_data)
    return nonce, ciphertext

# function to decrypt the serialized database
def decrypt_blob(
        ciphertext: bytes,
        nonce: bytes,
        key: bytes,
        associated_data: Optional[bytes] = None
) -> bytes:
    """
    Decrypt an AES-256-GCM blob.

    Raises:
        AuthenticationFailure: wrong key, wrong nonce or tampered ciphertext.
            The three cases are reported identically.
    """
    try:
        cipher = AESGCM(bytes(key))
        return cipher.decrypt(bytes(nonce), bytes(ciphertext), associated_data)
    except (InvalidTag, ValueError) as e:
        raise AuthenticationFailure(
            "Authentication failed: wrong key or data corrupted"
        ) from e
