"""
Post deployment verification.

Purpose
After convergence we confirm the deployment answers. Each ProbeSpec is one
health probe, for example an HTTP GET against the load balancer.

Retry policy
Nothing is retried implicitly. A probe is attempted attempts times with a
fixed backoff between attempts, and attempts defaults to one.

Failure
Every probe runs even when an earlier one failed, so the report lists all
failures. Any failure raises VerificationError. Verification never undoes the
deployment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import tenacity

from deploy_orchestrator.core.errors import VerificationError

logger = logging.getLogger(__name__)

_MAX_BODY_BYTES = 1024 * 1024


@dataclass(frozen=True)
class ProbeSpec:
    """
    One health probe.

    expected_status
    Accepted status codes. Empty accepts any 2xx.

    expect_text
    Optional substring the response body must contain.

    attempts
    Total attempts, one means no retry.
    """

    name: str
    url: str
    expected_status: tuple[int, ...] = ()
    expect_text: str | None = None
    attempts: int = 1
    backoff_seconds: float = 0.0
    timeout_seconds: float = 5.0


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    status: int | None = None
    detail: str = ""


class Probe(Protocol):
    """Run a single probe attempt."""

    def check(self, spec: ProbeSpec) -> ProbeResult:
        """Return the result of one attempt. Must not raise for transport errors."""


def status_accepted(spec: ProbeSpec, status: int) -> bool:
    if spec.expected_status:
        return status in spec.expected_status
    return 200 <= status < 300


class HttpProbe(Probe):
    """HTTP GET probe."""

    def check(self, spec: ProbeSpec) -> ProbeResult:
        req = Request(url=spec.url, method="GET", headers={"User-Agent": "deploy-orchestrator"})
        try:
            with urlopen(req, timeout=spec.timeout_seconds) as resp:
                status = int(resp.status)
                body = resp.read(_MAX_BODY_BYTES).decode("utf-8", errors="replace")
        except HTTPError as exc:
            status = int(exc.code)
            body = ""
        except (URLError, OSError) as exc:
            return ProbeResult(ok=False, status=None, detail=f"{spec.url} unreachable: {exc}")

        if not status_accepted(spec, status):
            return ProbeResult(ok=False, status=status, detail=f"{spec.url} returned status {status}")

        if spec.expect_text is not None and spec.expect_text not in body:
            return ProbeResult(
                ok=False,
                status=status,
                detail=f"{spec.url} body does not contain {spec.expect_text!r}",
            )

        return ProbeResult(ok=True, status=status, detail=f"{spec.url} returned status {status}")


def run_probe(spec: ProbeSpec, probe: Probe) -> ProbeResult:
    """
    Run one probe with its bounded retry.

    Returns the last result when every attempt failed.
    """

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(max(1, spec.attempts)),
        wait=tenacity.wait_fixed(spec.backoff_seconds),
        retry=tenacity.retry_if_result(lambda r: not r.ok),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retryer(probe.check, spec)


@dataclass
class VerificationOutcome:
    """
    Verification outcome.

    ok
    True only when every probe passes.

    failures
    Human readable failure messages.
    """

    ok: bool
    results: dict[str, ProbeResult] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)


def evaluate_probes(specs: list[ProbeSpec], probe: Probe | None = None) -> VerificationOutcome:
    """Run every probe and collect results without raising."""
    probe = probe or HttpProbe()
    outcome = VerificationOutcome(ok=True)

    for spec in specs:
        result = run_probe(spec, probe)
        outcome.results[spec.name] = result
        if result.ok:
            logger.info("probe %s passed: %s", spec.name, result.detail)
        else:
            logger.error("probe %s failed: %s", spec.name, result.detail)
            outcome.failures.append(f"probe {spec.name}: {result.detail}")

    outcome.ok = not outcome.failures
    return outcome


def verify(specs: list[ProbeSpec], probe: Probe | None = None) -> VerificationOutcome:
    """
    Run every probe.

    Raises VerificationError when any probe failed.
    """
    outcome = evaluate_probes(specs, probe)
    if not outcome.ok:
        raise VerificationError(
            f"{len(outcome.failures)} of {len(specs)} probes failed: " + "; ".join(outcome.failures),
            failures=outcome.failures,
        )
    return outcome
