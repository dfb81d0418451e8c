import pytest

from unpin.core.jobs import JobManager


class FakeHook:

    def __init__(self, name, removed, fail=False):
        self.name = name
        self.removed = removed
        self.fail = fail

    def remove(self):
        if self.fail:
            raise RuntimeError(f"{self.name} is stuck")
        self.removed.append(self.name)


def test_identifiers_are_unique(jobs):
    first = jobs.create("ios-sslpinning-disable")
    second = jobs.create("ios-sslpinning-disable")

    assert first.identifier != second.identifier


def test_teardown_runs_in_reverse_install_order(jobs):
    removed = []
    job = jobs.create("ios-sslpinning-disable")
    job.record_replacement(FakeHook("SSLSetSessionOption", removed))
    job.record_observation(FakeHook("nw_tls_create_peer_trust", removed))
    job.record_replacement(FakeHook("SSLCreateContext", removed))
    jobs.add(job)

    assert jobs.kill(job.identifier)

    assert removed == ["SSLCreateContext", "nw_tls_create_peer_trust", "SSLSetSessionOption"]
    assert job.hook_count == 0
    assert jobs.get(job.identifier) is None


def test_none_hooks_are_ignored(jobs):
    job = jobs.create("ios-sslpinning-disable")
    job.record_observation(None)
    job.record_replacement(None)

    assert job.hook_count == 0


def test_sealed_job_rejects_new_hooks(jobs):
    job = jobs.create("ios-sslpinning-disable")
    jobs.add(job)

    with pytest.raises(RuntimeError):
        job.record_replacement(FakeHook("SSLHandshake", []))


def test_teardown_continues_past_broken_hooks(jobs):
    removed = []
    job = jobs.create("ios-sslpinning-disable")
    job.record_replacement(FakeHook("SSLHandshake", removed))
    job.record_replacement(FakeHook("SSLCreateContext", removed, fail=True))
    job.record_replacement(FakeHook("tls_helper_create_peer_trust", removed))

    assert job.teardown() == 2
    assert removed == ["tls_helper_create_peer_trust", "SSLHandshake"]


def test_kill_unknown_job(jobs):
    assert not jobs.kill(99)


def test_kill_all():
    jobs = JobManager()
    removed = []
    for name in ("first", "second"):
        job = jobs.create(name)
        job.record_observation(FakeHook(name, removed))
        jobs.add(job)

    assert jobs.kill_all() == 2
    assert sorted(removed) == ["first", "second"]
    assert jobs.list() == []
