#!/usr/bin/env python3
"""
Pinning Bypass Module - iOS SSL 피닝 비활성화 오케스트레이터

## 구현 방식:
1. **Job 생성**: "ios-sslpinning-disable" 라벨의 Job 하나
2. **전략 실행**: STRATEGIES 테이블 순서대로, 서로 격리하여 실행
   - 한 전략의 실패(FAILED)가 나머지 전략을 막지 않음
   - 대상이 없는 전략은 ABSENT (오류 아님)
3. **후킹 기록**: 설치된 관찰/교체 후킹을 Job에 기록
4. **Job 등록**: JobManager.add()로 봉인 및 등록
5. **결과 반환**: BypassReport (전략별 결과 + 집계)

## 사용 예시:
```python
bypass = PinningBypass(runtime, JobManager(), BypassConfig(quiet=True))
report = bypass.disable()
print(report.summary())
```
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Type

from ..core.jobs import Job, JobManager
from ..core.reporter import Reporter
from ..hooking.interceptor import HookInstaller, ObservationHook, ReplacementHook
from ..hooking.resolver import SymbolResolver
from ..hooking.runtime import Runtime
from .strategies import STRATEGIES, Outcome, Strategy, StrategyResult, strategy_keys

JOB_LABEL = "ios-sslpinning-disable"


@dataclass
class BypassConfig:
    """
    피닝 우회 설정

    Attributes:
        quiet: 호출 단위 로그 생략
        skip: 실행하지 않을 전략 키
        bridge_timeout: 콜백 안에서 에이전트 요청 대기 시간 (초)
        max_workers: 후킹 콜백을 처리할 워커 스레드 수
    """
    quiet: bool = False
    skip: Set[str] = field(default_factory=set)
    bridge_timeout: float = 10.0
    max_workers: int = 16

    def __post_init__(self):
        unknown = set(self.skip) - set(strategy_keys())
        if unknown:
            raise ValueError(f"Unknown strategy key(s): {', '.join(sorted(unknown))}")

    def enabled(self, key: str) -> bool:
        return key not in self.skip


@dataclass
class BypassReport:
    """Outcome of one disable() call"""
    job: Job
    results: List[StrategyResult] = field(default_factory=list)

    def counts(self) -> Dict[Outcome, int]:
        counter = Counter(result.outcome for result in self.results)
        return {outcome: counter.get(outcome, 0) for outcome in Outcome}

    def by_outcome(self, outcome: Outcome) -> List[StrategyResult]:
        return [result for result in self.results if result.outcome == outcome]

    def result(self, key: str) -> Optional[StrategyResult]:
        for result in self.results:
            if result.key == key:
                return result
        return None

    @property
    def failed(self) -> bool:
        return any(result.outcome == Outcome.FAILED for result in self.results)

    def summary(self) -> str:
        counts = self.counts()
        parts = ", ".join(f"{counts[outcome]} {outcome.value}" for outcome in Outcome)
        return f"Job {self.job.identifier}: {self.job.hook_count} hooks ({parts})"


class PinningBypass:
    """
    iOS SSL 피닝 비활성화

    ## 주요 기능:
    - disable(): 모든 활성 전략 실행, Job 등록, 보고서 반환

    ## 의존성 주입:
    - runtime: 계측 대상 프로세스 (FridaRuntime 또는 테스트용 합성 프로세스)
    - installer: 생략 시 runtime 위에 새로 생성
    - strategies: 생략 시 STRATEGIES 전체
    """

    def __init__(self, runtime: Runtime, job_manager: JobManager,
                 config: Optional[BypassConfig] = None,
                 installer: Optional[HookInstaller] = None,
                 strategies: Optional[Sequence[Type[Strategy]]] = None):
        self.logger = logging.getLogger(__name__)
        self.runtime = runtime
        self.job_manager = job_manager
        self.config = config or BypassConfig()
        self.resolver = SymbolResolver(runtime)
        self.installer = installer or HookInstaller(runtime)
        self.strategies = list(strategies) if strategies is not None else list(STRATEGIES)

    def disable(self) -> BypassReport:
        """
        Disable SSL pinning in the target process

        Returns:
            BypassReport: Per-strategy results and the job owning every hook
        """
        job = self.job_manager.create(JOB_LABEL)
        reporter = Reporter(quiet=self.config.quiet).for_job(job.identifier)

        if self.config.quiet:
            reporter.log("Quiet mode enabled. Not reporting invocations.")

        report = BypassReport(job=job)
        group = None

        for strategy_class in self.strategies:
            if not self.config.enabled(strategy_class.key):
                self.logger.debug(f"Skipping strategy {strategy_class.key}")
                continue

            if strategy_class.group != group:
                group = strategy_class.group
                reporter.log(group)

            result = self._run(strategy_class, reporter)
            for hook in result.hooks:
                if isinstance(hook, ReplacementHook):
                    job.record_replacement(hook)
                elif isinstance(hook, ObservationHook):
                    job.record_observation(hook)
            report.results.append(result)

            if result.outcome == Outcome.FAILED:
                reporter.warn(f"{strategy_class.key}: {result.detail}")
            elif result.outcome == Outcome.LIMITED:
                reporter.log(f"{strategy_class.key}: {result.detail}")

        self.job_manager.add(job)
        self.logger.info(report.summary())
        return report

    def _run(self, strategy_class: Type[Strategy], reporter: Reporter) -> StrategyResult:
        strategy = strategy_class(self.runtime, self.resolver, self.installer, reporter)
        try:
            return strategy.apply()
        except Exception as e:
            # Strategies only roll back UnpinError; anything else is a bug in one strategy
            self.logger.exception(f"Strategy {strategy_class.key} crashed")
            strategy._rollback()
            return StrategyResult(strategy_class.key, Outcome.FAILED, detail=str(e))
