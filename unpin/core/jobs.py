#!/usr/bin/env python3
"""
Jobs Module - 후킹 Job 생명주기 관리 모듈

한 번의 "disable pinning" 호출이 설치한 모든 후킹을 하나의 Job으로 묶고,
Job 단위로 일괄 해제합니다.

## 구현 방식:
1. **Job 생성**: JobManager.create()가 고유 식별자를 발급
2. **후킹 기록**: record_observation() / record_replacement()로 추가 (append-only)
3. **봉인(seal)**: 호출이 끝나면 멤버십 변경 불가
4. **해제**: teardown()이 역순으로 모든 후킹을 제거하고 Job을 비움

## 해제 순서:
설치 역순으로 제거합니다. 나중에 설치된 후킹이 먼저 설치된 후킹의
original을 호출할 수 있기 때문입니다 (예: SSLCreateContext → SSLSetSessionOption).
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol


class Removable(Protocol):
    """Anything a Job can own: an installed hook that knows how to remove itself"""

    def remove(self) -> None:
        ...


@dataclass
class Job:
    """
    후킹 묶음 (teardown 단위)

    Attributes:
        identifier: Job 번호 (JobManager가 발급)
        label: 사람이 읽는 이름 (예: ios-sslpinning-disable)
        invocations: Observation 후킹 목록
        replacements: Replacement 후킹 목록
        started: 생성 시각
    """
    identifier: int
    label: str
    invocations: List[Removable] = field(default_factory=list)
    replacements: List[Removable] = field(default_factory=list)
    started: datetime = field(default_factory=datetime.now)
    sealed: bool = False

    def __post_init__(self):
        self._order: List[Removable] = []
        self._lock = threading.Lock()

    def record_observation(self, hook: Optional[Removable]):
        """Record an observation hook; None is ignored"""
        if hook is None:
            return
        self._record(self.invocations, hook)

    def record_replacement(self, hook: Optional[Removable]):
        """Record a replacement hook; None is ignored"""
        if hook is None:
            return
        self._record(self.replacements, hook)

    def _record(self, bucket: List[Removable], hook: Removable):
        with self._lock:
            if self.sealed:
                raise RuntimeError(f"Job {self.identifier} is sealed")
            bucket.append(hook)
            self._order.append(hook)

    def seal(self):
        """Freeze membership once the owning invocation has finished"""
        with self._lock:
            self.sealed = True

    @property
    def hook_count(self) -> int:
        return len(self.invocations) + len(self.replacements)

    def teardown(self) -> int:
        """
        Remove every hook owned by this job

        Returns:
            int: Number of hooks removed
        """
        logger = logging.getLogger(__name__)

        with self._lock:
            hooks = list(reversed(self._order))
            self._order.clear()
            self.invocations.clear()
            self.replacements.clear()

        removed = 0
        for hook in hooks:
            try:
                hook.remove()
                removed += 1
            except Exception as e:
                # A broken hook does not stop the rest from being removed
                logger.error(f"Job {self.identifier}: failed to remove {hook}: {e}")

        return removed


class JobManager:
    """
    실행 중인 Job 레지스트리

    ## 주요 역할:
    - create(): 새 Job 생성 (식별자 발급)
    - add(): 완료된 Job 등록
    - kill() / kill_all(): Job 해제 및 제거
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._ids = itertools.count(1)
        self._jobs: Dict[int, Job] = {}
        self._lock = threading.Lock()

    def create(self, label: str) -> Job:
        """Create a fresh job with a new identifier"""
        with self._lock:
            identifier = next(self._ids)
        return Job(identifier=identifier, label=label)

    def add(self, job: Job):
        """Register a finished job"""
        job.seal()
        with self._lock:
            self._jobs[job.identifier] = job
        self.logger.debug(f"Registered job {job.identifier} ({job.label}, {job.hook_count} hooks)")

    def get(self, identifier: int) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(identifier)

    def list(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    def kill(self, identifier: int) -> bool:
        """
        Tear down and forget a job

        Args:
            identifier: Job identifier

        Returns:
            bool: True if the job existed
        """
        with self._lock:
            job = self._jobs.pop(identifier, None)

        if job is None:
            self.logger.warning(f"Job not found: {identifier}")
            return False

        removed = job.teardown()
        self.logger.info(f"Killed job {identifier} ({removed} hooks removed)")
        return True

    def kill_all(self) -> int:
        """Tear down every registered job"""
        with self._lock:
            identifiers = list(self._jobs.keys())

        for identifier in identifiers:
            self.kill(identifier)

        return len(identifiers)
