"""Tests for webhook signature verification."""

import json

from leadflow.messaging.signatures import compute_signature, verify_handshake, verify_signature

SECRET = "app-secret"
BODY = json.dumps({"object": "whatsapp_business_account", "entry": []}).encode()


class TestVerifySignature:
    """Tests for verify_signature."""

    def test_valid_signature(self):
        """Test a signature computed with the shared secret verifies."""
        assert verify_signature(BODY, compute_signature(BODY, SECRET), SECRET) is True

    def test_one_byte_tamper_fails(self):
        """Test changing a single byte of the body invalidates the signature."""
        signature = compute_signature(BODY, SECRET)
        tampered = bytearray(BODY)
        tampered[10] ^= 0x01

        assert verify_signature(bytes(tampered), signature, SECRET) is False

    def test_wrong_secret_fails(self):
        """Test a signature from another secret is rejected."""
        assert verify_signature(BODY, compute_signature(BODY, "other"), SECRET) is False

    def test_missing_pieces_fail(self):
        """Test missing header, missing prefix and missing secret are all rejected."""
        digest = compute_signature(BODY, SECRET)

        assert verify_signature(BODY, None, SECRET) is False
        assert verify_signature(BODY, digest[len("sha256="):], SECRET) is False
        assert verify_signature(BODY, digest, "") is False


class TestVerifyHandshake:
    """Tests for the subscription handshake."""

    def test_handshake(self):
        """Test only mode=subscribe with the right token returns the challenge."""
        assert verify_handshake("subscribe", "tok", "c-1", "tok") == "c-1"
        assert verify_handshake("subscribe", "bad", "c-1", "tok") is None
        assert verify_handshake("subscribe", None, "c-1", "tok") is None
        assert verify_handshake("subscribe", "tok", "c-1", "") is None
