# -*- coding: utf-8 -*-

import logging
from dataclasses import dataclass, field

from dateutil import parser

from .exceptions import ResponseShapeError, UnsupportedAuthMethod
from .providers import PROVIDERS


@dataclass(frozen=True)
class SessionToken:
    """Bearer token returned by a successful login.

    A new instance replaces the old one on re-authentication; instances are
    never mutated.
    """
    token: str
    accessor: str
    renewable: bool
    lease_duration: int
    policies: tuple = ()
    metadata: dict = field(default_factory=dict)
    expire_time: object = None

    def __repr__(self):
        return (f"SessionToken(accessor={self.accessor!r}, renewable={self.renewable}, "
                f"lease_duration={self.lease_duration})")

    @classmethod
    def from_responses(cls, token, auth, lookup_data):
        """Merge the login ``auth`` block (may be empty) with ``lookup-self`` data."""
        auth = auth or {}
        expire_time = lookup_data.get("expire_time")
        if expire_time:
            expire_time = parser.parse(expire_time)
        lease_duration = auth.get("lease_duration")
        if lease_duration is None:
            lease_duration = lookup_data.get("ttl", 0)
        return cls(token=token,
                   accessor=lookup_data.get("accessor") or auth.get("accessor") or "",
                   renewable=bool(lookup_data.get("renewable", False)),
                   lease_duration=int(lease_duration or 0),
                   policies=tuple(auth.get("policies") or lookup_data.get("policies") or ()),
                   metadata=dict(auth.get("metadata") or lookup_data.get("meta") or {}),
                   expire_time=expire_time)


class Authenticator:
    """Performs the one time login handshake against vault.

    Picks the identity proof provider for ``config.authentication``, has it
    build the login payload and submits that to ``auth/{mount}/login``. The
    static token method skips the login and adopts the configured token. In
    every case the token is then confirmed with ``lookup-self``.

    Errors from providers or from vault propagate unchanged; nothing here
    retries.
    """

    def __init__(self, providers=None):
        self._providers = dict(PROVIDERS)
        if providers:
            self._providers.update(providers)

    def provider_for(self, config):
        provider = self._providers.get(config.authentication)
        if provider is None:
            raise UnsupportedAuthMethod(config.authentication)
        # registry may hold classes or ready built (test) instances
        if isinstance(provider, type):
            provider = provider()
        return provider

    def authenticate(self, config, client):
        """Log in and return the confirmed :class:`SessionToken`.

        Args:
            config (SessionConfig): session configuration.
            client (hvac.Client): client used for the login and lookup calls,
                its token is replaced by the new session token.

        Raises:
            ConfigurationError: a field the method needs is empty, raised
                before any network call.
        """
        provider = self.provider_for(config)
        provider.validate(config)
        logging.getLogger(__name__).info(f"Using {config.authentication} authentication")

        auth = None
        if provider.login_required:
            mount = provider.mount_for(config)
            logging.getLogger(__name__).info(f"Mount: auth/{mount}")
            if config.role:
                logging.getLogger(__name__).info(f"Role: {config.role}")
            payload = provider.prove(config)
            login_path = provider.login_path(config)
            response = client.login(url=f"/v1/{login_path}", use_token=False, json=payload)
            auth = (response or {}).get("auth") or {}
            if not auth.get("client_token"):
                raise ResponseShapeError(login_path, "auth.client_token")
            logging.getLogger(__name__).info(f"Metadata: {auth.get('metadata')}")
            token = auth["client_token"]
        else:
            token = provider.token_for(config)

        client.token = token

        logging.getLogger(__name__).info("Looking up token")
        lookup = client.auth.token.lookup_self()
        lookup_data = (lookup or {}).get("data")
        if lookup_data is None:
            raise ResponseShapeError("auth/token/lookup-self", "data")

        session_token = SessionToken.from_responses(token, auth, lookup_data)
        logging.getLogger(__name__).info(
            f"Authenticated accessor {session_token.accessor} renewable {session_token.renewable} "
            f"lease {session_token.lease_duration}s")
        return session_token
