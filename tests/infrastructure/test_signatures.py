"""
Tests for inbound webhook signature schemes.

Each scheme is checked for the happy path, a mutated body, a wrong secret
and (where timestamps are signed) the replay window.
"""

import base64
import hashlib
import hmac
import time

import jwt
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from src.infrastructure.messaging.signatures import (
    hmac_sha256_base64,
    is_timestamp_fresh,
    verify_ecdsa_signature,
    verify_hmac_hex,
    verify_jwt_hs256,
    verify_shared_secret,
    verify_standard_webhook,
    verify_svix_webhook,
)

BODY = b'{"event":"order.picked_up","orderId":"order-1"}'


def standard_signature(secret, webhook_id, timestamp, body):
    signed = f"{timestamp}.{webhook_id}.".encode() + body
    return "v1," + hmac_sha256_base64(secret.encode(), signed)


class TestStandardWebhook:

    def setup_method(self):
        self.now = int(time.time())
        self.timestamp = str(self.now)
        self.signature = standard_signature("secret", "msg_1", self.timestamp, BODY)

    def test_valid(self):
        assert verify_standard_webhook("secret", "msg_1", self.timestamp, BODY, self.signature, now=self.now)

    def test_one_of_several_signatures_matches(self):
        header = f"v1,bm90LWl0 {self.signature}"
        assert verify_standard_webhook("secret", "msg_1", self.timestamp, BODY, header, now=self.now)

    def test_mutated_body(self):
        assert not verify_standard_webhook(
            "secret", "msg_1", self.timestamp, BODY + b" ", self.signature, now=self.now
        )

    def test_wrong_secret(self):
        assert not verify_standard_webhook("other", "msg_1", self.timestamp, BODY, self.signature, now=self.now)

    def test_wrong_id(self):
        assert not verify_standard_webhook("secret", "msg_2", self.timestamp, BODY, self.signature, now=self.now)

    @pytest.mark.parametrize("offset, accepted", [(299, True), (-299, True), (301, False), (-301, False)])
    def test_replay_window(self, offset, accepted):
        assert verify_standard_webhook(
            "secret", "msg_1", self.timestamp, BODY, self.signature, now=self.now + offset
        ) is accepted

    @pytest.mark.parametrize("missing", ["secret", "webhook_id", "timestamp", "signature"])
    def test_missing_parts_fail_closed(self, missing):
        parts = {
            "secret": "secret",
            "webhook_id": "msg_1",
            "timestamp": self.timestamp,
            "signature": self.signature,
        }
        parts[missing] = ""
        assert not verify_standard_webhook(
            parts["secret"], parts["webhook_id"], parts["timestamp"], BODY, parts["signature"], now=self.now
        )


def test_non_numeric_timestamp_is_stale():
    assert not is_timestamp_fresh("yesterday")


class TestSvix:

    SECRET = "whsec_" + base64.b64encode(b"resend-secret").decode()

    def sign(self, svix_id, timestamp, body):
        signed = f"{svix_id}.{timestamp}.".encode() + body
        return "v1," + hmac_sha256_base64(b"resend-secret", signed)

    def test_valid(self):
        ts = str(int(time.time()))
        assert verify_svix_webhook(self.SECRET, "msg_1", ts, BODY, self.sign("msg_1", ts, BODY))

    def test_standard_webhook_ordering_is_not_accepted(self):
        ts = str(int(time.time()))
        wrong_order = standard_signature("resend-secret", "msg_1", ts, BODY)
        assert not verify_svix_webhook(self.SECRET, "msg_1", ts, BODY, wrong_order)

    def test_stale(self):
        ts = str(int(time.time()) - 600)
        assert not verify_svix_webhook(self.SECRET, "msg_1", ts, BODY, self.sign("msg_1", ts, BODY))

    def test_secret_that_is_not_base64(self):
        ts = str(int(time.time()))
        assert not verify_svix_webhook("whsec_***", "msg_1", ts, BODY, self.sign("msg_1", ts, BODY))


class TestHmacAndSharedSecret:

    def test_hex_hmac(self):
        signature = hmac.new(b"im-secret", BODY, hashlib.sha256).hexdigest()

        assert verify_hmac_hex("im-secret", BODY, signature)
        assert verify_hmac_hex("im-secret", BODY, signature.upper())
        assert not verify_hmac_hex("im-secret", BODY + b"x", signature)
        assert not verify_hmac_hex("", BODY, signature)

    def test_hex_hmac_rejects_non_ascii_signature(self):
        assert not verify_hmac_hex("im-secret", BODY, "éabc")
        assert not verify_shared_secret("im-secret", "ïm-secret")

    def test_shared_secret(self):
        assert verify_shared_secret("im-secret", "im-secret")
        assert not verify_shared_secret("im-secret", "im-secreT")
        assert not verify_shared_secret("", "")


class TestJwt:

    def test_valid_token(self):
        token = jwt.encode({"id": 1}, "gw-secret", algorithm="HS256")
        assert verify_jwt_hs256(token, "gw-secret")

    def test_wrong_secret(self):
        token = jwt.encode({"id": 1}, "other", algorithm="HS256")
        assert not verify_jwt_hs256(token, "gw-secret")

    def test_garbage(self):
        assert not verify_jwt_hs256("not-a-jwt", "gw-secret")
        assert not verify_jwt_hs256(None, "gw-secret")


class TestEcdsa:

    @pytest.fixture(scope="class")
    def keypair(self):
        private_key = ec.generate_private_key(ec.SECP256R1())
        public_der = private_key.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()
        return private_key, base64.b64encode(public_der).decode(), public_pem

    @staticmethod
    def sign(private_key, timestamp, body):
        signature = private_key.sign(timestamp.encode() + body, ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode()

    def test_bare_base64_key(self, keypair):
        private_key, public_b64, _ = keypair
        signature = self.sign(private_key, "1700000000", BODY)

        assert verify_ecdsa_signature(public_b64, "1700000000", BODY, signature)

    def test_pem_key(self, keypair):
        private_key, _, public_pem = keypair
        signature = self.sign(private_key, "1700000000", BODY)

        assert verify_ecdsa_signature(public_pem, "1700000000", BODY, signature)

    def test_mutated_body_or_timestamp(self, keypair):
        private_key, public_b64, _ = keypair
        signature = self.sign(private_key, "1700000000", BODY)

        assert not verify_ecdsa_signature(public_b64, "1700000000", BODY + b" ", signature)
        assert not verify_ecdsa_signature(public_b64, "1700000001", BODY, signature)

    def test_invalid_key(self):
        assert not verify_ecdsa_signature("bm90IGEga2V5", "1700000000", BODY, "c2ln")
