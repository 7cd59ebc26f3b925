# -*- coding: utf-8 -*-
"""Synchronous secret operations made with the session's current token."""

import base64
import logging
from dataclasses import dataclass, field

import hvac.exceptions

from .exceptions import ResponseShapeError, UpstreamError


@dataclass(frozen=True)
class SecretRecord:
    path: str
    data: dict = field(default_factory=dict)
    request_id: str = ""
    lease_id: str = ""
    lease_duration: int = 0
    renewable: bool = False
    warnings: tuple = ()

    def __repr__(self):
        # data holds the secret itself
        return (f"{type(self).__name__}(path={self.path!r}, lease_id={self.lease_id!r}, "
                f"renewable={self.renewable}, keys={sorted(self.data)})")

    @property
    def is_leased(self):
        return bool(self.lease_id)

    @classmethod
    def from_response(cls, path, response):
        """Build a record, a :class:`LeasedSecret` when vault attached a lease."""
        record_cls = LeasedSecret if response.get("lease_id") else SecretRecord
        return record_cls(path=path,
                          data=dict(response.get("data") or {}),
                          request_id=response.get("request_id") or "",
                          lease_id=response.get("lease_id") or "",
                          lease_duration=int(response.get("lease_duration") or 0),
                          renewable=bool(response.get("renewable", False)),
                          warnings=tuple(response.get("warnings") or ()))


@dataclass(frozen=True, repr=False)
class LeasedSecret(SecretRecord):
    """A secret with its own lease, such as dynamic database credentials."""


class SecretGateway:
    """Read, transit encrypt/decrypt and revoke through a :class:`VaultSession`.

    Every call takes the client from the session, which refuses to hand one out
    before authentication has completed. Errors reported by vault surface as the
    ``hvac.exceptions.VaultError`` subclass hvac raised.
    """

    def __init__(self, session):
        self._session = session

    def read_secret(self, path):
        logging.getLogger(__name__).info(f"Getting secret: {path}")
        response = self._session.client().read(path)
        if response is None:
            raise hvac.exceptions.InvalidPath(f"no secret at {path}", url=path)
        return SecretRecord.from_response(path, response)

    def encrypt(self, path, plaintext):
        """Encrypt with a transit key.

        :param path: transit endpoint, e.g. ``transit/encrypt/orders``
        :param plaintext: str (UTF-8 encoded) or bytes, base64 encoded before sending
        :return: vault ciphertext string
        """
        response = self._session.client().write_data(path, data={"plaintext": _b64encode(plaintext)})
        return _field(path, response, "ciphertext")

    def decrypt(self, path, ciphertext, encoding="UTF-8"):
        """Decrypt with a transit key.

        :param path: transit endpoint, e.g. ``transit/decrypt/orders``
        :param ciphertext: string returned by :meth:`encrypt`
        :param encoding: decode the plaintext with this, ``None`` returns bytes
        """
        response = self._session.client().write_data(path, data={"ciphertext": ciphertext})
        return _b64decode(path, _field(path, response, "plaintext"), encoding)

    def encrypt_batch(self, path, plaintexts):
        batch = [{"plaintext": _b64encode(p)} for p in plaintexts]
        response = self._session.client().write_data(path, data={"batch_input": batch})
        return [item["ciphertext"] for item in _batch_results(path, response, "ciphertext")]

    def decrypt_batch(self, path, ciphertexts, encoding="UTF-8"):
        batch = [{"ciphertext": c} for c in ciphertexts]
        response = self._session.client().write_data(path, data={"batch_input": batch})
        return [_b64decode(path, item["plaintext"], encoding)
                for item in _batch_results(path, response, "plaintext")]

    def revoke(self):
        """Revoke the session token.

        :return: True if a token was revoked, False when there was none or
            vault no longer recognised it
        """
        token = self._session._release_token()
        if token is None:
            logging.getLogger(__name__).info("No active token, already revoked")
            return False

        try:
            self._session._client_for(token).auth.token.revoke_self()
        except (hvac.exceptions.Forbidden, hvac.exceptions.Unauthorized):
            logging.getLogger(__name__).warning(
                f"Token accessor {token.accessor} was already revoked or expired")
            return False
        logging.getLogger(__name__).info(f"Revoked token accessor {token.accessor}")
        return True


def _field(path, response, name):
    data = (response or {}).get("data") or {}
    value = data.get(name)
    if not isinstance(value, str):
        raise ResponseShapeError(path, f"data.{name}")
    return value


def _batch_results(path, response, name):
    results = ((response or {}).get("data") or {}).get("batch_results")
    if not isinstance(results, list):
        raise ResponseShapeError(path, "data.batch_results")
    for item in results:
        if item.get("error"):
            raise UpstreamError(path, None, item["error"])
        if not isinstance(item.get(name), str):
            raise ResponseShapeError(path, f"data.batch_results[].{name}")
    return results


def _b64encode(plaintext):
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    return base64.b64encode(plaintext).decode("ascii")


def _b64decode(path, value, encoding):
    try:
        decoded = base64.b64decode(value, validate=True)
    except ValueError as e:
        raise ResponseShapeError(path, "base64 plaintext") from e
    if encoding:
        return decoded.decode(encoding)
    return decoded
