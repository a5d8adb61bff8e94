"""
Signature codec for requests to the storage cloud.

Every parameter set exchanged with the master or a node is JSON-encoded
and encrypted into a single token (Fernet, keyed by access key + secret
key). Two bookkeeping fields are added on the way out and checked on the
way in:

    time  - unix timestamp of signing
    hash  - sha1(access_key + secret_key), proves both sides share the keys

Fernet tokens are url-safe base64, but callers still escape them for URLs.
"""

import base64
import hashlib
import json
import logging
import time
from typing import Any, Union

from cryptography.fernet import Fernet, InvalidToken

from ...core.storage.errors import KeyVerificationFailed

logger = logging.getLogger(__name__)


class Cipher:
    """Encrypts and decrypts signed parameter sets."""

    def __init__(self, access_key: str, secret_key: str) -> None:
        if not access_key or not secret_key:
            raise ValueError("access_key and secret_key are required")

        self._key_hash = hashlib.sha1((access_key + secret_key).encode("utf-8")).hexdigest()

        digest = hashlib.sha256(f"{access_key}:{secret_key}".encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    @property
    def key_hash(self) -> str:
        return self._key_hash

    def encrypt(self, params: dict[str, Any]) -> str:
        payload = {str(key): value for key, value in params.items()}
        payload.setdefault("time", int(time.time()))
        payload["hash"] = self._key_hash

        data = json.dumps(payload, default=str, sort_keys=True).encode("utf-8")
        return self._fernet.encrypt(data).decode("ascii")

    def decrypt(self, token: Union[str, bytes]) -> dict[str, Any]:
        """
        Decrypt a token into its parameter set.

        Raises KeyVerificationFailed when the token is not ours: wrong
        keys, tampered data, or a payload without the matching key hash.
        """
        if isinstance(token, str):
            token = token.strip().encode("ascii", errors="ignore")

        if not token:
            raise KeyVerificationFailed("Empty signature")

        try:
            data = self._fernet.decrypt(token)
        except InvalidToken as e:
            raise KeyVerificationFailed("Signature could not be decrypted") from e

        try:
            payload = json.loads(data)
        except ValueError as e:
            raise KeyVerificationFailed("Signature does not contain a parameter set") from e

        if not isinstance(payload, dict):
            raise KeyVerificationFailed("Signature does not contain a parameter set")

        if payload.get("hash") != self._key_hash:
            logger.warning("Signature key hash mismatch")
            raise KeyVerificationFailed("Key hash does not match")

        return payload
