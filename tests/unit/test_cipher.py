"""
Unit tests for the signature codec.
"""

import json
import time
from datetime import datetime

import pytest

from cloudfiles.core.storage.errors import KeyVerificationFailed
from cloudfiles.infrastructure.cloud import Cipher


class TestCipher:
    """Signing and verification of parameter sets."""

    def test_decrypt_returns_signed_parameters(self):
        cipher = Cipher("access", "secret")

        params = cipher.decrypt(cipher.encrypt({"action": "get", "path": "files/1/cat.png"}))

        assert params["action"] == "get"
        assert params["path"] == "files/1/cat.png"

    def test_encrypt_adds_time_and_key_hash(self):
        cipher = Cipher("access", "secret")

        params = cipher.decrypt(cipher.encrypt({"action": "status"}))

        assert params["hash"] == cipher.key_hash
        assert abs(params["time"] - time.time()) < 5

    def test_explicit_time_is_kept(self):
        cipher = Cipher("access", "secret")

        params = cipher.decrypt(cipher.encrypt({"action": "status", "time": 1286543242}))

        assert params["time"] == 1286543242

    def test_values_without_json_form_are_signed_as_strings(self):
        cipher = Cipher("access", "secret")

        params = cipher.decrypt(cipher.encrypt({"action": "meta", "at": datetime(2020, 1, 1)}))

        assert params["at"] == "2020-01-01 00:00:00"

    def test_tokens_from_other_keys_are_rejected(self):
        token = Cipher("access", "secret").encrypt({"action": "get"})

        with pytest.raises(KeyVerificationFailed):
            Cipher("access", "other-secret").decrypt(token)

    def test_tampered_token_is_rejected(self):
        cipher = Cipher("access", "secret")
        token = cipher.encrypt({"action": "get"})
        tampered = token[:-5] + ("A" if token[-5] != "A" else "B") + token[-4:]

        with pytest.raises(KeyVerificationFailed):
            cipher.decrypt(tampered)

    def test_empty_token_is_rejected(self):
        with pytest.raises(KeyVerificationFailed, match="Empty"):
            Cipher("access", "secret").decrypt("  ")

    def test_payload_without_key_hash_is_rejected(self):
        """A readable token is still refused when it doesn't prove the shared keys."""
        cipher = Cipher("access", "secret")
        token = cipher._fernet.encrypt(json.dumps({"action": "get"}).encode()).decode()

        with pytest.raises(KeyVerificationFailed, match="hash"):
            cipher.decrypt(token)

    def test_payload_must_be_a_parameter_set(self):
        cipher = Cipher("access", "secret")
        token = cipher._fernet.encrypt(b"[1, 2, 3]").decode()

        with pytest.raises(KeyVerificationFailed):
            cipher.decrypt(token)

    def test_keys_are_required(self):
        with pytest.raises(ValueError):
            Cipher("", "secret")
