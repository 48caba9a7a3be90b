"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Leader election on a coordination.k8s.io Lease, so that only one
migration workflow at a time touches the namespace.

Lease handling follows the client-go leader election semantics (the
record fields, expiry rule and timings are the same), so a lease left
behind by another migration tool is interpreted the same way.

"""
from collections.abc import Callable, Iterator
from kubemigrate.common import magic, utils
from kubemigrate.common.exceptions import (
    AlreadyExistsException,
    ConflictException,
    LeadershipLostException,
    WaitTimeoutException,
)
from kubemigrate.common.kube import Kind, KubeClient, Manifest

import contextlib
import datetime
import logging
import socket
import threading
import time
import uuid

logger = logging.getLogger(__name__)


def lease_identity() -> str:
    # Unique even when invoked repeatedly on the same host
    return f"{socket.gethostname()}_{uuid.uuid1()}"


class LeaderLock:
    def __init__(
        self,
        kube: KubeClient,
        *,
        name: str = magic.LEADER_ELECTION_ID,
        identity: str | None = None,
        lease_duration: float = magic.LEASE_DURATION,
        renew_deadline: float = magic.RENEW_DEADLINE,
        retry_period: float = magic.RETRY_PERIOD,
        clock: Callable[[], datetime.datetime] = utils.now,
    ) -> None:
        self.kube = kube
        self.name = name
        self.identity = lease_identity() if identity is None else identity
        self.lease_duration = lease_duration
        self.renew_deadline = renew_deadline
        self.retry_period = retry_period
        self.clock = clock

    def _is_expired(self, spec: Manifest, now: datetime.datetime) -> bool:
        renewed = spec.get("renewTime") or spec.get("acquireTime")
        if not renewed:
            return True
        duration = spec.get("leaseDurationSeconds") or self.lease_duration
        return utils.parse_time(renewed) + datetime.timedelta(seconds=duration) < now

    def try_acquire_or_renew(self) -> bool:
        now = self.clock()
        timestamp = utils.format_micro_time(now)
        lease = self.kube.get_or_none(Kind.lease, self.name)
        if lease is None:
            body = {
                "apiVersion": "coordination.k8s.io/v1",
                "kind": "Lease",
                "metadata": {"name": self.name},
                "spec": {
                    "holderIdentity": self.identity,
                    "leaseDurationSeconds": int(self.lease_duration),
                    "acquireTime": timestamp,
                    "renewTime": timestamp,
                    "leaseTransitions": 0,
                },
            }
            try:
                self.kube.create(Kind.lease, body)
            except AlreadyExistsException:
                return False
            return True

        spec = lease.get("spec") or {}
        holder = spec.get("holderIdentity") or ""
        if holder and holder != self.identity and not self._is_expired(spec, now):
            logger.debug("Lease %s is held by %s", self.name, holder)
            return False
        if holder != self.identity:
            spec["acquireTime"] = timestamp
            spec["leaseTransitions"] = (spec.get("leaseTransitions") or 0) + 1
        spec["holderIdentity"] = self.identity
        spec["leaseDurationSeconds"] = int(self.lease_duration)
        spec["renewTime"] = timestamp
        lease["spec"] = spec
        try:
            self.kube.update(Kind.lease, lease)
        except ConflictException:
            logger.debug("Lease %s was updated concurrently", self.name)
            return False
        return True

    def acquire(self, timeout: float | None = None) -> "Lease":
        """Block until the lease is ours, then keep renewing it in the background."""
        start = time.monotonic()
        logger.info("Acquiring lease %s as %s", self.name, self.identity)
        while not self.try_acquire_or_renew():
            if timeout is not None and time.monotonic() - start >= timeout:
                raise WaitTimeoutException(f"Unable to acquire lease {self.name} in {timeout}s")
            time.sleep(self.retry_period)
        logger.info("Acquired lease %s", self.name)
        lease = Lease(self)
        lease.start()
        return lease

    @contextlib.contextmanager
    def held(self, timeout: float | None = None) -> Iterator["Lease"]:
        lease = self.acquire(timeout)
        try:
            yield lease
        finally:
            lease.release()

    def release(self) -> None:
        lease = self.kube.get_or_none(Kind.lease, self.name)
        if lease is None or (lease.get("spec") or {}).get("holderIdentity") != self.identity:
            return
        lease["spec"].update(
            holderIdentity="",
            leaseDurationSeconds=1,
            renewTime=utils.format_micro_time(self.clock()),
        )
        try:
            self.kube.update(Kind.lease, lease)
        except ConflictException:
            logger.warning("Lease %s changed while releasing it, leaving it to expire", self.name)
            return
        logger.info("Released lease %s", self.name)


class Lease:
    """Handle of an acquired lease; renewed by a daemon thread until released"""

    def __init__(self, lock: LeaderLock) -> None:
        self.lock = lock
        self.lost = threading.Event()
        self.stopped = threading.Event()
        self.thread = threading.Thread(target=self._renew_loop, name=f"lease-{lock.name}", daemon=True)

    def start(self) -> None:
        self.thread.start()

    def _renew_loop(self) -> None:
        last_renew = time.monotonic()
        while not self.stopped.wait(self.lock.retry_period):
            try:
                renewed = self.lock.try_acquire_or_renew()
            except Exception:  # pylint: disable=broad-except
                logger.warning("Failed to renew lease %s", self.lock.name, exc_info=True)
                renewed = False
            if renewed:
                last_renew = time.monotonic()
            elif time.monotonic() - last_renew > self.lock.renew_deadline:
                logger.error("Lease %s lost, not renewed in %.1fs", self.lock.name, self.lock.renew_deadline)
                self.lost.set()
                return

    def check(self) -> None:
        if self.lost.is_set():
            raise LeadershipLostException(f"Lease {self.lock.name} was lost")

    def release(self) -> None:
        self.stopped.set()
        if self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join()
        if not self.lost.is_set():
            self.lock.release()
