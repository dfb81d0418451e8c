#!/usr/bin/env python3
"""
Reporter Module - 후킹 결정 로깅 모듈

모든 전략(strategy)과 후킹 콜백이 공유하는 로깅 싱크입니다.

## 구현 방식:
1. **표준 logging 사용**: `unpin.bypass` 로거로 출력 (RichHandler는 CLI에서 설정)
2. **Quiet 플래그 주입**: 전역 변수 대신 Reporter 생성 시 고정
3. **Job 접두어**: for_job()으로 `[job_id] ` 접두어가 붙은 Reporter 파생

## 메시지 종류:
- log(): 항상 출력 (설치 시점 메시지, 라이브러리 발견 등)
- log_if_verbose(): quiet 모드에서는 생략 (호출될 때마다 발생하는 메시지)

## 주의사항:
quiet 값은 전략 실행 전에 한 번만 정해지고 이후 읽기 전용입니다.
후킹 콜백은 여러 스레드에서 동시에 호출되므로 Reporter는 불변 객체로 유지합니다.
"""

import logging
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class Reporter:
    """
    Quiet 플래그가 고정된 로깅 싱크

    Attributes:
        quiet: True면 호출 단위(per-invocation) 메시지 생략
        prefix: 모든 메시지 앞에 붙는 문자열 (예: "[3] ")
        logger: 출력 대상 로거
    """
    quiet: bool = False
    prefix: str = ""
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("unpin.bypass"))

    def log(self, message: str):
        """Log a message unconditionally"""
        self.logger.info(f"{self.prefix}{message}")

    def log_if_verbose(self, message: str):
        """Log a message unless quiet mode is enabled"""
        if self.quiet:
            return
        self.logger.info(f"{self.prefix}{message}")

    def warn(self, message: str):
        """Log a warning unconditionally"""
        self.logger.warning(f"{self.prefix}{message}")

    def for_job(self, identifier: int) -> "Reporter":
        """
        Derive a reporter that tags every message with a job identifier

        Args:
            identifier: Job identifier

        Returns:
            Reporter: New reporter sharing quiet flag and logger
        """
        return replace(self, prefix=f"[{identifier}] ")
