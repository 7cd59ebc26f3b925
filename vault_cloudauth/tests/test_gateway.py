# -*- coding: utf-8 -*-
"""
This modules purpose is to test secret reads, transit and revocation

"""
import base64
import logging
import unittest
from unittest import mock

import hvac.exceptions

from vault_cloudauth import *


def setup_module():
    logging.basicConfig(level=logging.DEBUG)


class FakeTransit:
    """Stands in for the transit engine, ciphertext is the reversed base64 payload"""

    def __init__(self):
        self.requests = []

    def __call__(self, path, data=None, wrap_ttl=None):
        self.requests.append((path, data))
        if "batch_input" in data:
            if "/encrypt/" in path:
                results = [{"ciphertext": self.seal(item["plaintext"])} for item in data["batch_input"]]
            else:
                results = [{"plaintext": self.unseal(item["ciphertext"])} for item in data["batch_input"]]
            return {"data": {"batch_results": results}}
        if "/encrypt/" in path:
            base64.b64decode(data["plaintext"], validate=True)
            return {"data": {"ciphertext": self.seal(data["plaintext"]), "key_version": 1}}
        return {"data": {"plaintext": self.unseal(data["ciphertext"])}}

    @staticmethod
    def seal(b64):
        return "vault:v1:" + b64[::-1]

    @staticmethod
    def unseal(ciphertext):
        return ciphertext[len("vault:v1:"):][::-1]


def authenticated_session(client):
    client.auth.token.lookup_self.return_value = {"data": {"accessor": "acc-1",
                                                           "renewable": False, "ttl": 0}}
    config = SessionConfig(authentication="token", credential=Credential(token="s.static"))
    session = VaultSession(config, _client_factory=lambda **kwargs: client,
                           fatal_handler=mock.Mock())
    session.authenticate()
    return session


class TestReadSecret(unittest.TestCase):

    def setUp(self):
        self.client = mock.MagicMock()
        self.session = authenticated_session(self.client)

    def tearDown(self):
        self.session.shutdown()

    def test_dynamic_secret_is_leased(self):
        self.client.read.return_value = {"request_id": "req-1",
                                         "lease_id": "abc",
                                         "lease_duration": 3600,
                                         "renewable": True,
                                         "data": {"username": "u", "password": "hunter2"}}

        secret = self.session.gateway.read_secret("database/creds/app")

        self.client.read.assert_called_once_with("database/creds/app")
        assert isinstance(secret, LeasedSecret)
        assert secret.lease_id == "abc"
        assert secret.renewable is True
        assert secret.lease_duration == 3600
        assert secret.data == {"username": "u", "password": "hunter2"}
        assert "hunter2" not in repr(secret), "Secret values are not printed"

    def test_static_secret_is_not_leased(self):
        self.client.read.return_value = {"lease_id": "", "lease_duration": 2764800,
                                         "renewable": False, "data": {"api_key": "k"}}
        secret = self.session.get_secret("secret/app")
        assert not isinstance(secret, LeasedSecret)
        assert not secret.is_leased

    def test_missing_path(self):
        self.client.read.return_value = None
        with self.assertRaises(hvac.exceptions.InvalidPath):
            self.session.get_secret("secret/missing")

    def test_server_error_unchanged(self):
        denied = hvac.exceptions.Forbidden("permission denied")
        self.client.read.side_effect = denied
        with self.assertRaises(hvac.exceptions.Forbidden) as ctx:
            self.session.get_secret("secret/app")
        assert ctx.exception is denied


class TestTransit(unittest.TestCase):

    def setUp(self):
        self.client = mock.MagicMock()
        self.transit = FakeTransit()
        self.client.write_data.side_effect = self.transit
        self.session = authenticated_session(self.client)

    def tearDown(self):
        self.session.shutdown()

    def test_round_trip(self):
        for plaintext in ["Jane Doe", "", "naïve café ☕", "a" * 4096, "line1\nline2"]:
            ciphertext = self.session.encrypt("transit/encrypt/orders", plaintext)
            assert ciphertext.startswith("vault:v1:")
            assert plaintext not in ciphertext or plaintext == ""
            assert self.session.decrypt("transit/decrypt/orders", ciphertext) == plaintext

    def test_plaintext_sent_base64(self):
        self.session.encrypt("transit/encrypt/orders", "Jane Doe")
        path, data = self.transit.requests[-1]
        assert path == "transit/encrypt/orders"
        assert data == {"plaintext": base64.b64encode(b"Jane Doe").decode("ascii")}

    def test_bytes_round_trip(self):
        raw = bytes(range(256))
        ciphertext = self.session.gateway.encrypt("transit/encrypt/blobs", raw)
        assert self.session.gateway.decrypt("transit/decrypt/blobs", ciphertext, encoding=None) == raw

    def test_batch_round_trip(self):
        plaintexts = ["alice", "bob", "carol"]
        ciphertexts = self.session.gateway.encrypt_batch("transit/encrypt/orders", plaintexts)
        assert len(ciphertexts) == 3
        assert self.session.gateway.decrypt_batch("transit/decrypt/orders", ciphertexts) == plaintexts

    def test_batch_item_error(self):
        self.client.write_data.side_effect = None
        self.client.write_data.return_value = {"data": {"batch_results": [
            {"plaintext": "YWxpY2U="}, {"error": "cipher: message authentication failed"}]}}
        with self.assertRaises(UpstreamError):
            self.session.gateway.decrypt_batch("transit/decrypt/orders", ["vault:v1:x", "vault:v1:y"])

    def test_missing_ciphertext(self):
        self.client.write_data.side_effect = None
        self.client.write_data.return_value = {"data": {"key_version": 1}}
        with self.assertRaises(ResponseShapeError) as ctx:
            self.session.encrypt("transit/encrypt/orders", "Jane Doe")
        assert ctx.exception.field == "data.ciphertext"

    def test_ciphertext_wrong_type(self):
        self.client.write_data.side_effect = None
        self.client.write_data.return_value = {"data": {"plaintext": 42}}
        with self.assertRaises(ResponseShapeError):
            self.session.decrypt("transit/decrypt/orders", "vault:v1:abc")

    def test_transit_error_unchanged(self):
        self.client.write_data.side_effect = hvac.exceptions.InvalidRequest("invalid ciphertext")
        with self.assertRaises(hvac.exceptions.InvalidRequest):
            self.session.decrypt("transit/decrypt/orders", "garbage")


class TestRevoke(unittest.TestCase):

    def test_revoke_is_idempotent(self):
        client = mock.MagicMock()
        session = authenticated_session(client)

        assert session.revoke() is True
        client.auth.token.revoke_self.assert_called_once_with()
        assert session.token is None
        assert session.revoke() is False, "Second revoke reports already revoked"
        client.auth.token.revoke_self.assert_called_once_with()

    def test_revoke_already_expired(self):
        client = mock.MagicMock()
        client.auth.token.revoke_self.side_effect = hvac.exceptions.Forbidden("permission denied")
        session = authenticated_session(client)
        assert session.revoke() is False
        assert session.token is None

    def test_operations_need_a_token(self):
        client = mock.MagicMock()
        session = VaultSession(SessionConfig(), _client_factory=lambda **kwargs: client)
        with self.assertRaises(NotAuthenticatedError):
            session.get_secret("secret/app")
        with self.assertRaises(NotAuthenticatedError):
            session.encrypt("transit/encrypt/orders", "x")
        client.read.assert_not_called()
        client.write_data.assert_not_called()
        assert session.revoke() is False


if __name__ == '__main__':
    unittest.main()
