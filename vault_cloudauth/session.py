# -*- coding: utf-8 -*-

import logging
import signal
import sys
import threading

import hvac
import hvac.exceptions

from .authenticator import Authenticator
from .exceptions import LeaseNotRenewable, NotAuthenticatedError
from .gateway import SecretGateway
from .renewer import LeaseSupervisor, RenewalFailurePolicy, SecretLease, TokenLease


class VaultSession:
    """Owns the configuration, the session token and its lease supervisors.

    Typical use by a process entry point::

        session = VaultSession(SessionConfig.from_env())
        session.install_signal_handlers()
        session.authenticate()
        creds = session.get_secret("database/creds/app")
        session.attach_secret_lease(creds)
        ...
        session.shutdown()

    Each thread gets its own hvac client (``threading.local``) carrying the
    current token, so background renewals never share a connection pool with
    foreground calls.

    Args:
        config (SessionConfig): where and how to authenticate.
        policy (RenewalFailurePolicy): what a supervisor does when its
            credential can no longer be renewed. ``TERMINATE`` ends the process.
        on_renewal_failure (callable, optional): called with the failing
            supervisor and its :class:`RenewalOutcome`.
        supervisor_options (dict, optional): extra keyword arguments for every
            :class:`LeaseSupervisor` started by this session.
        _client_factory (callable, optional): builds hvac clients, takes the
            same keyword arguments as ``hvac.Client``.
        _providers (dict, optional): method name to identity proof provider
            overrides.
    """

    def __init__(self, config, policy=RenewalFailurePolicy.TERMINATE, on_renewal_failure=None,
                 fatal_handler=None, supervisor_options=None, _client_factory=None,
                 _providers=None):
        self._config = config
        self._policy = RenewalFailurePolicy(policy)
        self._on_renewal_failure = on_renewal_failure
        self._fatal_handler = fatal_handler
        self._supervisor_options = dict(supervisor_options or {})
        self._client_factory = _client_factory if _client_factory is not None else hvac.Client
        self._authenticator = Authenticator(providers=_providers)
        self._gateway = SecretGateway(self)

        self.lock = threading.RLock()
        self.ns = threading.local()
        self._token = None
        self._supervisors = {}
        self._shut_down = False

    @property
    def config(self):
        return self._config

    @property
    def token(self):
        with self.lock:
            return self._token

    @property
    def gateway(self):
        return self._gateway

    @property
    def supervisors(self):
        with self.lock:
            return dict(self._supervisors)

    def _new_client(self, token):
        return self._client_factory(url=self._config.address,
                                    token=token,
                                    timeout=self._config.timeout,
                                    verify=self._config.verify)

    def _client_for(self, token):
        if not hasattr(self.ns, "client"):
            self.ns.client = self._new_client(token.token)
        elif self.ns.client.token != token.token:
            self.ns.client.token = token.token
        return self.ns.client

    def _current_token(self):
        # held by authenticate() for the whole handshake
        with self.lock:
            token = self._token
        if token is None:
            raise NotAuthenticatedError("Vault session has no token, call authenticate() first")
        return token

    def client(self):
        """hvac client for the calling thread, carrying the current token."""
        return self._client_for(self._current_token())

    def _bound_client(self, token):
        # supervisors renew with the token they were started under, never the
        # session's current one, and never wait on the session lock
        return lambda: self._client_for(token)

    def _release_token(self):
        with self.lock:
            token, self._token = self._token, None
        return token

    def authenticate(self):
        """Log in, store the token and supervise it when it is renewable.

        Calling it again on an authenticated session replaces the token once
        the new login has succeeded: every running supervisor is stopped and
        the superseded token is revoked, which also revokes the leases vault
        issued under it. A failed login leaves the current token in place.
        """
        with self.lock:
            logging.getLogger(__name__).info(
                f"Client authenticating to Vault at {self._config.address}")
            # token "" keeps hvac from picking up VAULT_TOKEN on its own
            token = self._authenticator.authenticate(self._config, self._new_client(""))
            if self._token is not None:
                self._retire(self._token)
            self._token = token
            self._shut_down = False

            if token.renewable:
                self._supervise(f"token:{token.accessor}",
                                TokenLease(self._bound_client(token), token))
            else:
                logging.getLogger(__name__).info(
                    f"Token accessor {token.accessor} is not renewable, not supervising")
        return token

    def _retire(self, token, timeout=10.0):
        logging.getLogger(__name__).info(f"Replacing token accessor {token.accessor}")
        supervisors = list(self._supervisors.values())
        self._supervisors = {}
        for supervisor in supervisors:
            supervisor.stop(timeout)

        try:
            self._new_client(token.token).auth.token.revoke_self()
        except (hvac.exceptions.Forbidden, hvac.exceptions.Unauthorized):
            logging.getLogger(__name__).warning(
                f"Token accessor {token.accessor} was already revoked or expired")
        except Exception:
            logging.getLogger(__name__).exception(
                f"While revoking superseded token accessor {token.accessor}")
        else:
            logging.getLogger(__name__).info(f"Revoked token accessor {token.accessor}")

    def _supervise(self, key, lease):
        with self.lock:
            existing = self._supervisors.get(key)
            if existing is not None and existing.is_alive():
                return existing
            supervisor = LeaseSupervisor(lease,
                                         policy=self._policy,
                                         on_failure=self._on_renewal_failure,
                                         fatal_handler=self._fatal_handler,
                                         **self._supervisor_options)
            self._supervisors[key] = supervisor
        return supervisor.start()

    def attach_secret_lease(self, secret):
        """Keep a leased secret alive, returns its :class:`LeaseSupervisor`."""
        if not secret.lease_id or not secret.renewable:
            raise LeaseNotRenewable(f"secret {secret.path}")
        with self.lock:
            token = self._current_token()
            return self._supervise(f"lease:{secret.lease_id}",
                                   SecretLease(self._bound_client(token), secret))

    def read_secret(self, path):
        return self._gateway.read_secret(path)

    get_secret = read_secret

    def encrypt(self, path, plaintext):
        return self._gateway.encrypt(path, plaintext)

    def decrypt(self, path, ciphertext, encoding="UTF-8"):
        return self._gateway.decrypt(path, ciphertext, encoding=encoding)

    def revoke(self):
        return self._gateway.revoke()

    def shutdown(self, timeout=10.0):
        """Stop every supervisor then revoke the token. Safe to call twice."""
        with self.lock:
            if self._shut_down:
                logging.getLogger(__name__).info("Vault session already shut down")
                return
            self._shut_down = True
            supervisors = list(self._supervisors.values())
            self._supervisors = {}

        for supervisor in supervisors:
            supervisor.stop(timeout)

        try:
            self.revoke()
        except Exception:
            logging.getLogger(__name__).exception("While revoking vault token at shutdown")

    def install_signal_handlers(self, signals=(signal.SIGINT, signal.SIGTERM)):
        """Shut down, revoking the token, then exit when one of ``signals`` arrives."""
        def _handler(signum, frame):
            logging.getLogger(__name__).info(f"Caught signal {signal.Signals(signum).name}")
            self.shutdown()
            sys.exit(0)

        for signum in signals:
            signal.signal(signum, _handler)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
        return False
