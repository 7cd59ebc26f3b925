# -*- coding: utf-8 -*-
"""Background lease renewal.

One :class:`LeaseSupervisor` keeps one renewable credential alive, either the
session token (:class:`TokenLease`) or a leased secret (:class:`SecretLease`).
It renews once straight away, then again at a fraction of each new lease
duration, until the credential cannot be renewed any more or its owner stops
it.

Every successful renewal is put on the supervisor's ``renewals`` queue. A
terminal failure is put on its ``done`` queue and then handed to the failure
policy: by default the process is terminated, because a lapsed vault token or
database credential leaves it unable to do useful work and its orchestrator
should restart it. An explicit :meth:`LeaseSupervisor.stop` ends the loop
without touching ``done`` or the policy.
"""

import logging
import os
import queue
import random
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import hvac.exceptions
import requests

from .exceptions import RenewalExhaustedError, TransportError

# server says no, renewing again cannot help
UNRENEWABLE_EXCEPTIONS = (hvac.exceptions.InvalidRequest,
                          hvac.exceptions.Unauthorized,
                          hvac.exceptions.Forbidden,
                          hvac.exceptions.InvalidPath)

# may clear up on their own
TRANSIENT_RENEWAL_EXCEPTIONS = (requests.exceptions.ConnectionError,
                                requests.exceptions.Timeout,
                                hvac.exceptions.VaultDown,
                                hvac.exceptions.InternalServerError,
                                hvac.exceptions.BadGateway,
                                hvac.exceptions.RateLimitExceeded)

# share of the largest lease seen that must still be left after the next wait
GRACE_FRACTION = 0.1


class SupervisorState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    RENEWING = "renewing"
    TERMINATED = "terminated"


class RenewalFailurePolicy(str, Enum):
    TERMINATE = "terminate"
    NOTIFY = "notify"


@dataclass(frozen=True)
class RenewalOutcome:
    lease: str
    lease_duration: int = 0
    error: Exception = None
    at: datetime = None

    @property
    def ok(self):
        return self.error is None


class TokenLease:
    """Renews the session token through ``renew-self``."""

    def __init__(self, client_callback, token):
        self._client_callback = client_callback
        self._token = token

    @property
    def name(self):
        return f"token accessor {self._token.accessor}"

    @property
    def lease_duration(self):
        return self._token.lease_duration

    def renew(self, increment=None):
        response = self._client_callback().auth.token.renew_self(increment=increment)
        auth = (response or {}).get("auth") or {}
        return int(auth.get("lease_duration") or 0), bool(auth.get("renewable", False))


class SecretLease:
    """Renews a leased secret by lease ID."""

    def __init__(self, client_callback, secret):
        self._client_callback = client_callback
        self._secret = secret

    @property
    def name(self):
        return f"lease {self._secret.lease_id}"

    @property
    def lease_duration(self):
        return self._secret.lease_duration

    def renew(self, increment=None):
        response = self._client_callback().sys.renew_lease(lease_id=self._secret.lease_id,
                                                          increment=increment)
        response = response or {}
        return int(response.get("lease_duration") or 0), bool(response.get("renewable", False))


def terminate_process(outcome):
    """Default fatal handler, ends the process without cleanup like a fatal log would."""
    logging.getLogger(__name__).critical(
        f"Cannot renew {outcome.lease}. Process will terminate. ({outcome.error})")
    logging.shutdown()
    os._exit(1)


# the thread only holds a weak reference between cycles so a supervisor
# dropped by its owner does not keep renewing

def _renewal_loop(supervisor_weak_ref):
    """
    Main background thread driver loop for renewing
    :param supervisor_weak_ref: weak reference to the lease supervisor
    :return: None
    """
    supervisor = supervisor_weak_ref()
    if supervisor is None:
        return
    wake = supervisor._wake
    # Idle -> Active renews straight away to normalise lease timing
    interval = 0.0
    del supervisor

    while True:
        wake.wait(interval)
        supervisor = supervisor_weak_ref()
        if supervisor is None:
            break
        wake.clear()
        try:
            interval = supervisor._cycle()
        except Exception:
            logging.getLogger(__name__).exception(f"While renewing {supervisor.name}")
            interval = None
        if interval is None:
            supervisor._terminated()
            break
        del supervisor


class LeaseSupervisor:
    """Keeps one renewable credential alive on a background thread.

    States run ``IDLE -> ACTIVE -> (RENEWING)* -> TERMINATED``.

    :param lease: :class:`TokenLease` or :class:`SecretLease` to renew
    :param policy: what a terminal failure does, see :class:`RenewalFailurePolicy`
    :param on_failure: callable taking ``(supervisor, outcome)``, called on a
        terminal failure under either policy
    :param fatal_handler: callable taking the outcome, ends the process under
        ``TERMINATE``; defaults to :func:`terminate_process`
    :param increment: seconds of extension to ask for, None for the default
    :param renew_fraction: share of the lease to wait before renewing, at most
        one half so renewals land before the lease midpoint
    :param grace: seconds of lease that must remain after the next wait once
        renewals stop extending the lease; defaults to a tenth of the largest
        lease seen (or of ``increment`` when smaller)
    :param transient_retries: transport failures tolerated in a row before
        they become terminal; 0 treats the first one as terminal
    """

    def __init__(self, lease, policy=RenewalFailurePolicy.TERMINATE, on_failure=None,
                 fatal_handler=None, increment=None, renew_fraction=0.5, jitter=0.1,
                 min_interval=1.0, grace=None, transient_retries=0, retry_delay=5.0):
        assert 0.0 < renew_fraction <= 0.5, "Renewal must happen at or before the lease midpoint"
        assert 0.0 <= jitter < 1.0, "Jitter is a fraction of the renewal interval"

        self._lease = lease
        self._policy = RenewalFailurePolicy(policy)
        self._on_failure = on_failure
        self._fatal_handler = fatal_handler if fatal_handler is not None else terminate_process
        self._increment = increment
        self._renew_fraction = renew_fraction
        self._jitter = jitter
        self._min_interval = min_interval
        self._grace = grace
        self._transient_retries = transient_retries
        self._retry_delay = retry_delay

        self.renewals = queue.Queue()
        self.done = queue.Queue(maxsize=1)
        self.lock = threading.Lock()
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._state = SupervisorState.IDLE
        self._lease_duration = lease.lease_duration
        self._peak_duration = lease.lease_duration
        self._transient_failures = 0
        self.next_interval = None
        self.renew_count = 0
        self._thread = None

    @property
    def name(self):
        return self._lease.name

    @property
    def state(self):
        return self._state

    @property
    def lease_duration(self):
        return self._lease_duration

    @property
    def policy(self):
        return self._policy

    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self.lock:
            if self._thread is not None:
                raise RuntimeError(f"Supervisor for {self.name} already started")
            self._state = SupervisorState.ACTIVE
            t = threading.Thread(target=_renewal_loop,
                                 name=f"renew_{self.name}", args=[weakref.ref(self)])
            t.daemon = True
            self._thread = t
        logging.getLogger(__name__).info(f"Starting lifecycle management for {self.name}")
        t.start()
        return self

    def renew_now(self):
        """Ask the loop to renew without waiting for the timer."""
        self._wake.set()

    def stop(self, timeout=None):
        """Owner initiated stop, never reported as a failure."""
        self._stopped.set()
        self._wake.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)
        with self.lock:
            self._state = SupervisorState.TERMINATED
        logging.getLogger(__name__).info(f"Stopped lifecycle management for {self.name}")

    @property
    def grace(self):
        if self._grace is not None:
            return self._grace
        basis = self._peak_duration
        if self._increment:
            basis = min(basis, self._increment)
        return basis * GRACE_FRACTION

    def interval_for(self, lease_duration):
        ceiling = lease_duration * self._renew_fraction
        interval = ceiling - ceiling * random.uniform(0.0, self._jitter)
        # the floor never pushes a renewal past the lease midpoint
        return min(max(interval, self._min_interval), ceiling)

    def _reached_max_ttl(self, lease_duration, next_interval):
        # past its max TTL vault still answers renewable, with whatever is left
        requested = self._increment or self._lease_duration
        if lease_duration >= requested:
            return False
        return lease_duration - next_interval <= self.grace

    def _cycle(self):
        """Run one renewal, returns seconds until the next one or None to finish."""
        with self.lock:
            if self._stopped.is_set():
                return None
            self._state = SupervisorState.RENEWING

        try:
            lease_duration, renewable = self._lease.renew(self._increment)
            if not renewable or lease_duration <= 0:
                raise RenewalExhaustedError(self.name, "lease is past its maximum TTL")
            next_interval = self.interval_for(lease_duration)
            if self._reached_max_ttl(lease_duration, next_interval):
                raise RenewalExhaustedError(self.name, "lease reached its maximum TTL")
        except RenewalExhaustedError as e:
            return self._fail(e)
        except UNRENEWABLE_EXCEPTIONS as e:
            return self._fail(RenewalExhaustedError(self.name, e))
        except TRANSIENT_RENEWAL_EXCEPTIONS as e:
            error = TransportError(self.name, e)
            if self._transient_failures < self._transient_retries and not self._stopped.is_set():
                self._transient_failures += 1
                logging.getLogger(__name__).warning(
                    f"Renewal of {self.name} failed ({self._transient_failures}/"
                    f"{self._transient_retries}), retrying: {e}")
                with self.lock:
                    self._state = SupervisorState.ACTIVE
                # never wait past what is left of the lease
                return min(self._retry_delay, self.interval_for(self._lease_duration))
            return self._fail(error)
        except Exception as e:
            return self._fail(TransportError(self.name, e))

        with self.lock:
            self._transient_failures = 0
            self._lease_duration = lease_duration
            self._peak_duration = max(self._peak_duration, lease_duration)
            self.renew_count += 1
            self.next_interval = next_interval
            if not self._stopped.is_set():
                self._state = SupervisorState.ACTIVE
        self.renewals.put(RenewalOutcome(lease=self.name, lease_duration=lease_duration,
                                         at=datetime.now(timezone.utc)))
        logging.getLogger(__name__).info(f"Successfully renewed {self.name} for {lease_duration}s")
        return self.next_interval

    def _fail(self, error):
        if self._stopped.is_set():
            # a call racing an explicit stop is not a failure
            logging.getLogger(__name__).info(f"Renewal of {self.name} ended by stop: {error}")
            return None

        outcome = RenewalOutcome(lease=self.name, lease_duration=self._lease_duration,
                                 error=error, at=datetime.now(timezone.utc))
        with self.lock:
            self._state = SupervisorState.TERMINATED
        self.done.put(outcome)

        if self._on_failure is not None:
            try:
                self._on_failure(self, outcome)
            except Exception:
                logging.getLogger(__name__).exception(f"Failure callback for {self.name}")

        if self._policy == RenewalFailurePolicy.TERMINATE:
            self._fatal_handler(outcome)
        else:
            logging.getLogger(__name__).error(f"Cannot renew {self.name}: {error}")
        return None

    def _terminated(self):
        with self.lock:
            self._state = SupervisorState.TERMINATED
