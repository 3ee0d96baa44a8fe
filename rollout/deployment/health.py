#!/usr/bin/env python3
"""
HTTP health verification for a freshly reloaded service.
"""

import time

import requests

from .models import HealthCheckResult, ProbeResult, utcnow

DEFAULT_TIMEOUT = 5
DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF = 2


class HealthVerifier:
    """
    Probes an HTTP endpoint, retrying with a fixed backoff.

    A 2xx answer within the timeout is healthy. The probe result is the only
    input to the commit/rollback decision.
    """

    def __init__(self, backoff=DEFAULT_BACKOFF, session=None, sleep=time.sleep):
        self.backoff = backoff
        self.session = session or requests.Session()
        self.sleep = sleep

    def check(self, endpoint, timeout):
        """One request. Never raises for HTTP or network failures."""
        started = time.monotonic()
        timestamp = utcnow()
        try:
            response = self.session.get(endpoint, timeout=timeout)
            return HealthCheckResult(
                status_code=response.status_code, timed_out=False,
                latency=time.monotonic() - started, timestamp=timestamp
            )
        except requests.exceptions.Timeout as e:
            return HealthCheckResult(
                status_code=None, timed_out=True,
                latency=time.monotonic() - started, timestamp=timestamp, error=str(e)
            )
        except requests.exceptions.RequestException as e:
            return HealthCheckResult(
                status_code=None, timed_out=False,
                latency=time.monotonic() - started, timestamp=timestamp, error=str(e)
            )

    def probe(self, endpoint, timeout=DEFAULT_TIMEOUT, attempts=DEFAULT_ATTEMPTS):
        checks = []
        for attempt in range(1, attempts + 1):
            result = self.check(endpoint, timeout)
            checks.append(result)

            if result.ok:
                print(f"✓ {endpoint} -> {result.status_code} in {result.latency:.2f}s")
                return ProbeResult(healthy=True, checks=tuple(checks))

            if result.timed_out:
                reason = f"timeout after {timeout}s"
            elif result.status_code is not None:
                reason = f"status {result.status_code}"
            else:
                reason = result.error
            print(f"✗ {endpoint} attempt {attempt}/{attempts}: {reason}")

            if attempt < attempts:
                self.sleep(self.backoff)

        return ProbeResult(healthy=False, checks=tuple(checks))
