"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
from freezegun import freeze_time
from kubemigrate.common.exceptions import LeadershipLostException, WaitTimeoutException
from kubemigrate.common.kube import Kind
from kubemigrate.common.kube.memory import MemoryKubeClient
from kubemigrate.migrate.leader import LeaderLock, lease_identity
from pytest_mock import MockerFixture

import datetime
import pytest


def _spec(kube: MemoryKubeClient) -> dict:
    return kube.get(Kind.lease, "migrator.k8ssandra.io")["spec"]


def test_lease_identity_is_unique() -> None:
    assert lease_identity() != lease_identity()


@freeze_time("2024-03-01T10:00:00Z")
def test_first_acquire_creates_lease() -> None:
    kube = MemoryKubeClient()
    assert LeaderLock(kube, identity="a").try_acquire_or_renew()
    assert _spec(kube) == {
        "holderIdentity": "a",
        "leaseDurationSeconds": 10,
        "acquireTime": "2024-03-01T10:00:00.000000Z",
        "renewTime": "2024-03-01T10:00:00.000000Z",
        "leaseTransitions": 0,
    }


def test_held_lease_blocks_others_until_expired() -> None:
    kube = MemoryKubeClient()
    with freeze_time("2024-03-01T10:00:00Z") as frozen:
        first = LeaderLock(kube, identity="a")
        second = LeaderLock(kube, identity="b")
        assert first.try_acquire_or_renew()
        assert not second.try_acquire_or_renew()

        frozen.tick(datetime.timedelta(seconds=5))
        assert first.try_acquire_or_renew()
        assert _spec(kube)["renewTime"] == "2024-03-01T10:00:05.000000Z"
        assert _spec(kube)["acquireTime"] == "2024-03-01T10:00:00.000000Z"

        frozen.tick(datetime.timedelta(seconds=9))
        assert not second.try_acquire_or_renew()

        frozen.tick(datetime.timedelta(seconds=2))
        assert second.try_acquire_or_renew()
        spec = _spec(kube)
        assert spec["holderIdentity"] == "b"
        assert spec["leaseTransitions"] == 1
        assert spec["acquireTime"] == "2024-03-01T10:00:16.000000Z"
        assert not first.try_acquire_or_renew()


def test_release_frees_lease() -> None:
    kube = MemoryKubeClient()
    first = LeaderLock(kube, identity="a")
    second = LeaderLock(kube, identity="b")
    assert first.try_acquire_or_renew()
    second.release()
    assert _spec(kube)["holderIdentity"] == "a"
    first.release()
    assert _spec(kube)["holderIdentity"] == ""
    assert _spec(kube)["leaseDurationSeconds"] == 1
    assert second.try_acquire_or_renew()


def test_concurrent_update_loses(mocker: MockerFixture) -> None:
    kube = MemoryKubeClient()
    lock = LeaderLock(kube, identity="a")
    assert lock.try_acquire_or_renew()
    stale = kube.get(Kind.lease, "migrator.k8ssandra.io")
    lock.try_acquire_or_renew()
    mocker.patch.object(kube, "get_or_none", return_value=stale)
    assert not lock.try_acquire_or_renew()


def test_acquire_times_out() -> None:
    kube = MemoryKubeClient()
    assert LeaderLock(kube, identity="a").try_acquire_or_renew()
    with pytest.raises(WaitTimeoutException):
        LeaderLock(kube, identity="b").acquire(timeout=0)


def test_held_context_releases() -> None:
    kube = MemoryKubeClient()
    lock = LeaderLock(kube, identity="a", retry_period=0.01)
    with lock.held() as lease:
        lease.check()
        assert _spec(kube)["holderIdentity"] == "a"
    assert not lease.thread.is_alive()
    assert _spec(kube)["holderIdentity"] == ""


def test_lease_lost_when_not_renewed(mocker: MockerFixture) -> None:
    kube = MemoryKubeClient()
    lock = LeaderLock(kube, identity="a", retry_period=0.01, renew_deadline=0.05)
    lease = lock.acquire()
    mocker.patch.object(lock, "try_acquire_or_renew", return_value=False)
    assert lease.lost.wait(timeout=5)
    with pytest.raises(LeadershipLostException):
        lease.check()
    release = mocker.patch.object(lock, "release")
    lease.release()
    release.assert_not_called()
