#!/usr/bin/env python3
"""
Frida Engine Module - Frida 세션 및 스크립트 관리 모듈

Frida 세션의 생명주기를 관리하고 에이전트 스크립트 로드와 메시지 라우팅을 담당합니다.

## 구현 방식:
1. **세션 관리**: 프로세스 연결/해제, spawn/attach 지원
2. **스크립트 관리**: 이름별 스크립트 로드/언로드
3. **메시지 라우팅**: 스크립트별 메시지 핸들러 (FridaRuntime 브리지가 사용)
4. **통계 수집**: 처리한 호출 수, 에러, 경고 추적

## 주요 기능:
- **프로세스 이름 해석**: PID, 정확한 이름, 접두어 순으로 매칭
- **세션 유지 루프**: run()이 Ctrl+C 또는 시간 제한까지 후킹을 유지
"""

import logging
import signal
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..core.exceptions import SessionError

try:
    import frida
    FRIDA_AVAILABLE = True
except ImportError:
    FRIDA_AVAILABLE = False
    logging.warning("Frida not available. Hooking features will be disabled.")


MessageHandler = Callable[[Dict[str, Any], Optional[bytes]], None]


class FridaEngine:
    """
    Frida Engine - 후킹 세션 관리 클래스

    ## 주요 역할:
    1. **세션 생명주기 관리**:
       - attach(): 프로세스 연결 (spawn 포함)
       - detach(): 연결 해제
       - run(): 세션 유지 루프

    2. **스크립트 관리**:
       - load_script(): 스크립트 로드 및 실행
       - unload_script(): 스크립트 언로드

    3. **통계**:
       - record(): 카운터 증가 (여러 워커 스레드에서 호출됨)
       - get_stats(): 통계 스냅샷
    """

    def __init__(self, frida_device, target: str):
        """
        Initialize Frida Engine

        Args:
            frida_device: Frida device object
            target: Process name, bundle identifier or PID

        Raises:
            ImportError: If Frida is not available
        """
        if not FRIDA_AVAILABLE:
            raise ImportError("Frida is required but not installed")

        self.logger = logging.getLogger(__name__)
        self.device = frida_device
        self.target = target
        self.session = None
        self.scripts: Dict[str, Any] = {}
        self.running = False
        self.pid: Optional[int] = None

        self._stats_lock = threading.Lock()
        self.stats = {
            'calls_served': 0,
            'errors': 0,
            'warnings': 0,
            'start_time': None
        }

    def attach(self, spawn: bool = False):
        """
        Attach to the target process

        Args:
            spawn: If True, spawn the app; if False, attach to running process

        Raises:
            SessionError: If the process cannot be found or attached
        """
        try:
            if spawn:
                self.logger.info(f"Spawning {self.target}...")
                self.pid = self.device.spawn([self.target])
                self.session = self.device.attach(self.pid)
            else:
                self.logger.info(f"Attaching to {self.target}...")
                self.pid = self._resolve_pid(self.target.strip())
                self.session = self.device.attach(self.pid if self.pid is not None else self.target)

            self.session.on('detached', self._on_detached)
            self.logger.info("Attached successfully")
            self.stats['start_time'] = datetime.now()

        except frida.ProcessNotFoundError as e:
            raise SessionError(f"Process not found: {self.target}") from e
        except frida.InvalidOperationError as e:
            raise SessionError(f"Failed to attach to {self.target}: {e}") from e

    def resume(self):
        """Resume a spawned process once hooks are in place"""
        if self.pid is not None and self.session is not None:
            self.device.resume(self.pid)

    def _resolve_pid(self, target: str) -> Optional[int]:
        # 1) 숫자면 PID
        if target.isdigit():
            return int(target)

        # 2) 이름 그대로 / identifier 매칭 / 접두어 매칭 순으로 후보 선택
        try:
            procs = self.device.enumerate_processes()
        except frida.TransportError as e:
            self.logger.debug(f"Process enumeration failed: {e}")
            return None

        exact = [p for p in procs if p.name == target]
        starts = [p for p in procs if p.name.startswith(target)]
        candidates = exact or starts

        if not candidates:
            # 3) 마지막 fallback: 프리다 내부 매칭에 맡김
            return None

        best = candidates[0]
        self.logger.info(f"Resolved attach target: pid={best.pid} name={best.name}")
        return best.pid

    def _on_detached(self, reason, crash=None):
        self.logger.warning(f"Session detached: {reason}")
        self.running = False

    def detach(self):
        """Detach from the target process"""
        self.stop_all_scripts()

        if self.session:
            try:
                self.session.detach()
            except frida.InvalidOperationError as e:
                self.logger.debug(f"Session already gone: {e}")
            self.session = None

        self.logger.info("Detached")

    def load_script(self, script_code: str, script_name: str,
                    on_message: Optional[MessageHandler] = None):
        """
        Frida 스크립트 로드 및 실행

        Args:
            script_code: 실행할 JavaScript 코드
            script_name: 스크립트 식별자
            on_message: 메시지 핸들러 (없으면 기본 로깅 핸들러)

        Returns:
            frida.core.Script: 로드된 스크립트

        Raises:
            SessionError: attach 전이거나 스크립트 로드 실패 시
        """
        if not self.session:
            raise SessionError("Not attached to any process. Call attach() first.")

        if script_name in self.scripts:
            self.unload_script(script_name)

        try:
            script = self.session.create_script(script_code, name=script_name)
            script.on('message', on_message or self._default_message_handler)
            script.load()
        except frida.InvalidArgumentError as e:
            # 문법 오류
            self.record('errors')
            raise SessionError(f"Failed to compile script '{script_name}': {e}") from e
        except frida.InvalidOperationError as e:
            self.record('errors')
            raise SessionError(f"Failed to load script '{script_name}': {e}") from e

        self.scripts[script_name] = script
        self.logger.info(f"Loaded script: {script_name}")
        return script

    def unload_script(self, script_name: str) -> bool:
        """
        Unload a script

        Args:
            script_name: Name of the script to unload

        Returns:
            bool: True if unloaded successfully
        """
        script = self.scripts.pop(script_name, None)
        if script is None:
            self.logger.warning(f"Script not found: {script_name}")
            return False

        try:
            script.unload()
        except frida.InvalidOperationError as e:
            self.logger.debug(f"Script '{script_name}' already destroyed: {e}")

        self.logger.info(f"Unloaded script: {script_name}")
        return True

    def stop_all_scripts(self):
        """Stop and unload all scripts"""
        for script_name in list(self.scripts.keys()):
            self.unload_script(script_name)

    def _default_message_handler(self, message: Dict[str, Any], data: Optional[bytes]):
        if message['type'] == 'send':
            self.logger.info(str(message.get('payload')))
        elif message['type'] == 'error':
            self.log_script_error(message)

    def log_script_error(self, message: Dict[str, Any]):
        """Log an 'error' message emitted by a script"""
        self.logger.error(f"Script error: {message.get('description', 'Unknown error')}")
        self.logger.debug(f"Stack: {message.get('stack', 'No stack trace')}")
        self.record('errors')

    def record(self, counter: str, amount: int = 1):
        """Increment a statistics counter"""
        with self._stats_lock:
            self.stats[counter] += amount

    def run(self, duration: Optional[int] = None, on_stop: Optional[Callable[[], None]] = None):
        """
        세션 유지 루프

        Args:
            duration: 실행 시간 (초), None이면 무한 실행
            on_stop: 루프 종료 시 호출 (Job 해제 등)

        ## 종료 방법:
        1. **Ctrl+C**: SIGINT 시그널로 종료
        2. **시간 제한**: duration 파라미터로 자동 종료
        3. **세션 끊김**: detached 이벤트 수신 시
        """
        self.running = True

        def signal_handler(sig, frame):
            self.logger.info("Stopping session...")
            self.running = False

        signal.signal(signal.SIGINT, signal_handler)

        self.logger.info("Hooks active. Press Ctrl+C to stop.")

        start_time = time.time()
        try:
            while self.running:
                time.sleep(0.1)

                if duration and (time.time() - start_time) >= duration:
                    self.logger.info(f"Duration limit reached ({duration}s)")
                    break

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")

        finally:
            self.running = False
            if on_stop:
                on_stop()
            self._print_stats()

    def _print_stats(self):
        """Print session statistics"""
        if self.stats['start_time']:
            duration = (datetime.now() - self.stats['start_time']).total_seconds()
            self.logger.info("=== Session Statistics ===")
            self.logger.info(f"Duration: {duration:.1f}s")
            self.logger.info(f"Calls Intercepted: {self.stats['calls_served']}")
            self.logger.info(f"Errors: {self.stats['errors']}")
            self.logger.info(f"Warnings: {self.stats['warnings']}")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get session statistics

        Returns:
            Dict[str, Any]: Statistics dictionary
        """
        with self._stats_lock:
            stats = self.stats.copy()
        if stats['start_time']:
            stats['duration'] = (datetime.now() - stats['start_time']).total_seconds()
        return stats


def create_session(frida_device, target: str, spawn: bool = False) -> FridaEngine:
    """
    Convenience function to create an attached engine

    Args:
        frida_device: Frida device object
        target: Target process name, identifier or PID
        spawn: Spawn the app instead of attaching

    Returns:
        FridaEngine: Attached engine

    Raises:
        SessionError: If attaching fails
    """
    engine = FridaEngine(frida_device, target)
    engine.attach(spawn=spawn)
    return engine
