# -*- coding: utf-8 -*-
"""
This modules purpose is to test background lease renewal

"""
import gc
import logging
import sys
import threading
import unittest
from time import sleep
from unittest import mock

import hvac.exceptions
import requests

from vault_cloudauth import *


def setup_module():
    logging.basicConfig(level=logging.DEBUG)


def dump_threads():
    threads_now = ",".join([thread.name for thread in threading.enumerate()])
    print(f"threads now -> {threads_now}", file=sys.stderr)


def teardown_module():
    gc.collect()
    wait = 5.0
    while [t for t in threading.enumerate() if t.name.startswith("renew_")] and wait > 0.0:
        dump_threads()
        sleep(0.5)
        wait -= 0.5
    dump_threads()


class ScriptedLease:
    """Lease whose renew answers come from a script, the last entry repeats"""

    def __init__(self, script, lease_duration=0.05, name="lease test/1"):
        self.script = list(script)
        self.lease_duration = lease_duration
        self.name = name
        self.calls = 0

    def renew(self, increment=None):
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step


def supervisor_for(lease, **kwargs):
    kwargs.setdefault("fatal_handler", mock.Mock())
    kwargs.setdefault("min_interval", 0.0)
    return LeaseSupervisor(lease, **kwargs)


def drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


class TestLeaseSupervisor(unittest.TestCase):

    def test_renews_n_times_then_exhausts(self):
        n = 3
        lease = ScriptedLease([(0.05, True)] * n + [(0, False)])
        supervisor = supervisor_for(lease)
        supervisor.start()

        outcome = supervisor.done.get(timeout=5)
        supervisor._thread.join(5)
        sleep(0.1)

        renewals = drain(supervisor.renewals)
        assert len(renewals) == n, f"Expected {n} renewal notifications got {len(renewals)}"
        assert all(r.ok for r in renewals)
        assert not outcome.ok
        assert isinstance(outcome.error, RenewalExhaustedError)
        assert supervisor.done.empty(), "Exactly one terminal notification"
        assert lease.calls == n + 1, "No renewal after the terminal event"
        supervisor._fatal_handler.assert_called_once_with(outcome)
        assert supervisor.state == SupervisorState.TERMINATED
        assert not supervisor.is_alive()

    def test_stop_after_k_renewals(self):
        k = 3
        lease = ScriptedLease([(0.05, True)])
        on_failure = mock.Mock()
        supervisor = supervisor_for(lease, on_failure=on_failure)
        supervisor.start()

        for _ in range(k):
            supervisor.renewals.get(timeout=5)
        supervisor.stop(timeout=5)
        calls_at_stop = lease.calls
        sleep(0.2)

        assert lease.calls == calls_at_stop, "No renewal calls after stop"
        assert supervisor.done.empty(), "Stop is not a failure"
        on_failure.assert_not_called()
        supervisor._fatal_handler.assert_not_called()
        assert supervisor.state == SupervisorState.TERMINATED
        assert not supervisor.is_alive()

    def test_first_renewal_is_immediate(self):
        lease = ScriptedLease([(3600, True)], lease_duration=3600)
        supervisor = supervisor_for(lease, min_interval=1.0)
        supervisor.start()
        try:
            outcome = supervisor.renewals.get(timeout=5)
            assert outcome.lease_duration == 3600
            assert supervisor.state == SupervisorState.ACTIVE
            assert 0 < supervisor.next_interval <= 1800, "Next renewal lands before the lease midpoint"
        finally:
            supervisor.stop(timeout=5)

    def test_renew_now(self):
        lease = ScriptedLease([(3600, True)], lease_duration=3600)
        supervisor = supervisor_for(lease)
        supervisor.start()
        try:
            supervisor.renewals.get(timeout=5)
            supervisor.renew_now()
            supervisor.renewals.get(timeout=5)
            assert lease.calls == 2, "Signalled renew should not wait for the timer"
        finally:
            supervisor.stop(timeout=5)

    def test_server_refusal_is_exhaustion(self):
        lease = ScriptedLease([hvac.exceptions.InvalidRequest("lease not found or lease is not renewable")])
        supervisor = supervisor_for(lease)
        supervisor.start()
        outcome = supervisor.done.get(timeout=5)
        assert isinstance(outcome.error, RenewalExhaustedError)
        supervisor._fatal_handler.assert_called_once_with(outcome)

    def test_transport_error_is_terminal_by_default(self):
        lease = ScriptedLease([requests.exceptions.ConnectionError("connection refused")])
        supervisor = supervisor_for(lease)
        supervisor.start()
        outcome = supervisor.done.get(timeout=5)
        assert isinstance(outcome.error, TransportError)
        assert lease.calls == 1, "Strict policy does not retry the first renewal"
        supervisor._fatal_handler.assert_called_once_with(outcome)

    def test_transient_retries(self):
        lease = ScriptedLease([requests.exceptions.Timeout("slow"),
                               hvac.exceptions.InternalServerError("busy"),
                               (3600, True)], lease_duration=3600)
        supervisor = supervisor_for(lease, transient_retries=2, retry_delay=0.01)
        supervisor.start()
        try:
            outcome = supervisor.renewals.get(timeout=5)
            assert outcome.ok
            assert lease.calls == 3
            assert supervisor.done.empty()
            supervisor._fatal_handler.assert_not_called()
        finally:
            supervisor.stop(timeout=5)

    def test_transient_retries_run_out(self):
        lease = ScriptedLease([requests.exceptions.ConnectionError("down")])
        supervisor = supervisor_for(lease, transient_retries=2, retry_delay=0.01)
        supervisor.start()
        outcome = supervisor.done.get(timeout=5)
        assert isinstance(outcome.error, TransportError)
        assert lease.calls == 3, "Two retries then terminal"

    def test_notify_policy_does_not_terminate(self):
        lease = ScriptedLease([(0, False)])
        failed = threading.Event()
        on_failure = mock.Mock(side_effect=lambda supervisor, outcome: failed.set())
        supervisor = supervisor_for(lease, policy=RenewalFailurePolicy.NOTIFY, on_failure=on_failure)
        supervisor.start()

        assert failed.wait(5), "Owner should be told about the failure"
        outcome = supervisor.done.get(timeout=5)
        on_failure.assert_called_once_with(supervisor, outcome)
        supervisor._fatal_handler.assert_not_called()

    def test_interval_stays_before_midpoint(self):
        supervisor = supervisor_for(ScriptedLease([(1, True)]), jitter=0.1)
        for lease_duration in (2, 60, 3600, 86400):
            for _ in range(50):
                interval = supervisor.interval_for(lease_duration)
                assert 0.45 * lease_duration <= interval <= 0.5 * lease_duration

    def test_min_interval_never_reaches_expiry(self):
        supervisor = LeaseSupervisor(ScriptedLease([(1, True)]), min_interval=1.0)
        assert supervisor.interval_for(0.1) == 0.05, "Floor is capped at the lease midpoint"
        assert supervisor.interval_for(1) == 0.5
        assert supervisor.interval_for(2) == 1.0
        assert 1.35 <= supervisor.interval_for(3) <= 1.5

    def test_shrinking_lease_hits_max_ttl(self):
        lease = ScriptedLease([(8, True), (4, True), (2, True), (1, True)], lease_duration=8)
        supervisor = supervisor_for(lease)

        intervals = [supervisor._cycle() for _ in range(4)]

        assert all(0 < interval < duration for interval, duration in zip(intervals[:3], (8, 4, 2)))
        assert intervals[3] is None, "Lease inside the grace window ends supervision"
        assert len(drain(supervisor.renewals)) == 3
        outcome = supervisor.done.get_nowait()
        assert isinstance(outcome.error, RenewalExhaustedError)
        assert "maximum TTL" in str(outcome.error.reason)
        supervisor._fatal_handler.assert_called_once_with(outcome)
        assert supervisor.state == SupervisorState.TERMINATED

    def test_steady_lease_keeps_renewing(self):
        lease = ScriptedLease([(60, True)], lease_duration=60)
        supervisor = supervisor_for(lease)
        for _ in range(20):
            assert supervisor._cycle() is not None
        assert supervisor.done.empty()
        assert supervisor.renew_count == 20

    def test_increment_sets_the_grace_basis(self):
        lease = ScriptedLease([(600, True)], lease_duration=3600)
        supervisor = supervisor_for(lease, increment=600)
        assert supervisor.grace == 60
        assert supervisor._cycle() is not None, "Renewing down to the requested increment is not max TTL"
        assert supervisor.done.empty()

    def test_explicit_grace(self):
        lease = ScriptedLease([(100, True), (90, True)], lease_duration=100)
        supervisor = supervisor_for(lease, grace=50)
        assert supervisor._cycle() is not None
        assert supervisor._cycle() is None, "90s left, a 45s wait leaves less than 50s of grace"
        assert isinstance(supervisor.done.get_nowait().error, RenewalExhaustedError)

    def test_rejects_late_renewal_fraction(self):
        with self.assertRaises(AssertionError):
            LeaseSupervisor(ScriptedLease([(1, True)]), renew_fraction=0.9)

    def test_start_twice(self):
        supervisor = supervisor_for(ScriptedLease([(3600, True)], lease_duration=3600))
        supervisor.start()
        try:
            with self.assertRaises(RuntimeError):
                supervisor.start()
        finally:
            supervisor.stop(timeout=5)

    def test_stop_before_start(self):
        supervisor = supervisor_for(ScriptedLease([(1, True)]))
        supervisor.stop()
        assert supervisor.state == SupervisorState.TERMINATED


class TestLeaseTargets(unittest.TestCase):

    def test_token_lease(self):
        client = mock.MagicMock()
        client.auth.token.renew_self.return_value = {"auth": {"lease_duration": 1800,
                                                              "renewable": True,
                                                              "accessor": "acc-1"}}
        token = SessionToken(token="tok-1", accessor="acc-1", renewable=True, lease_duration=3600)
        lease = TokenLease(lambda: client, token)

        assert lease.name == "token accessor acc-1"
        assert lease.lease_duration == 3600
        assert lease.renew(increment=600) == (1800, True)
        client.auth.token.renew_self.assert_called_once_with(increment=600)

    def test_secret_lease(self):
        client = mock.MagicMock()
        client.sys.renew_lease.return_value = {"lease_id": "database/creds/app/abc",
                                               "lease_duration": 300, "renewable": False}
        secret = LeasedSecret(path="database/creds/app", lease_id="database/creds/app/abc",
                              lease_duration=600, renewable=True)
        lease = SecretLease(lambda: client, secret)

        assert lease.name == "lease database/creds/app/abc"
        assert lease.renew() == (300, False)
        client.sys.renew_lease.assert_called_once_with(lease_id="database/creds/app/abc",
                                                       increment=None)


if __name__ == '__main__':
    unittest.main()
