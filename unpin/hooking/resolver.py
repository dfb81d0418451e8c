#!/usr/bin/env python3
"""
Symbol Resolver Module - 후킹 대상 주소 탐색 모듈

TargetDescriptor를 현재 프로세스 이미지의 실제 주소로 변환합니다.

## 구현 방식:
1. **ExportTarget**: 익스포트 심볼 테이블에서 이름으로 조회 (단일 조회)
2. **MethodTarget**: 클래스의 메서드 테이블에서 셀렉터로 조회 (단일 조회)
3. **PatternTarget**: 로드된 모든 클래스의 메서드를 선형 탐색
   - Frida ApiResolver('objc') 패턴 문법 사용
   - 예: "-[* URLSession:didReceiveChallenge:completionHandler:]"
   - 여러 개의 결과가 나올 수 있는 유일한 모드

## 계약:
resolve()는 대상이 없다는 이유로 실패하지 않습니다. 대상이 없으면 빈 ResolvedTarget을 반환하고,
호출자는 이를 "기능 없음, 조용히 건너뛰기"로 처리해야 합니다.
런타임 자체가 응답하지 못하면 (세션 종료, 브리지 타임아웃) BridgeError가 그대로 올라가고
전략은 FAILED로 보고됩니다.
"""

import logging
from typing import Optional

from ..core.exceptions import BridgeError
from .runtime import Runtime
from .targets import (
    ExportTarget,
    MethodMatch,
    MethodTarget,
    PatternTarget,
    ResolvedTarget,
    TargetDescriptor
)


class SymbolResolver:
    """
    Runtime 위에서 동작하는 심볼 탐색기

    ## 사용 예시:
    ```python
    resolver = SymbolResolver(runtime)
    handshake = resolver.resolve(ExportTarget("SSLHandshake"))
    if handshake.found:
        installer.install_replacement(handshake, ...)
    ```
    """

    def __init__(self, runtime: Runtime):
        self.logger = logging.getLogger(__name__)
        self.runtime = runtime

    def resolve(self, descriptor: TargetDescriptor) -> ResolvedTarget:
        """
        Resolve a descriptor to zero or more addresses

        Args:
            descriptor: What to look for

        Returns:
            ResolvedTarget: Possibly empty resolution result

        Raises:
            BridgeError: If the runtime could not be reached
        """
        try:
            if isinstance(descriptor, ExportTarget):
                matches = self._resolve_export(descriptor)
            elif isinstance(descriptor, MethodTarget):
                matches = self._resolve_method(descriptor)
            elif isinstance(descriptor, PatternTarget):
                matches = tuple(self.runtime.enumerate_methods(descriptor.pattern))
            else:
                raise TypeError(f"Unknown target descriptor: {descriptor!r}")
        except (TypeError, BridgeError):
            raise
        except Exception as e:
            # Any other lookup error is treated as absence
            self.logger.warning(f"Lookup failed for {descriptor}: {e}")
            matches = ()

        self.logger.debug(f"Resolved {descriptor}: {len(matches)} match(es)")
        return ResolvedTarget(descriptor=descriptor, matches=matches)

    def _resolve_export(self, descriptor: ExportTarget):
        address = self.runtime.find_export(descriptor.name)
        if not address:
            return ()
        return (MethodMatch(name=descriptor.name, address=address),)

    def _resolve_method(self, descriptor: MethodTarget):
        if not self.runtime.class_exists(descriptor.class_name):
            return ()
        address = self.runtime.method_address(descriptor.class_name, descriptor.selector)
        if not address:
            return ()
        return (MethodMatch(name=str(descriptor), address=address),)

    def find_export(self, name: str) -> ResolvedTarget:
        """Shortcut for resolve(ExportTarget(name))"""
        return self.resolve(ExportTarget(name))

    def find_first_export(self, *names: str) -> Optional[ResolvedTarget]:
        """
        Resolve the first name that exists, trying fallbacks in order

        Args:
            names: Primary name followed by fallback names

        Returns:
            Optional[ResolvedTarget]: First found target, or None if none exist
        """
        for i, name in enumerate(names):
            target = self.find_export(name)
            if target.found:
                return target
            if i + 1 < len(names):
                self.logger.info(f"{name} not found, trying {names[i + 1]}")
        return None

    def find_method(self, class_name: str, selector: str) -> ResolvedTarget:
        """Shortcut for resolve(MethodTarget(class_name, selector))"""
        return self.resolve(MethodTarget(class_name, selector))

    def class_exists(self, name: str) -> bool:
        try:
            return self.runtime.class_exists(name)
        except BridgeError:
            raise
        except Exception as e:
            self.logger.debug(f"Class check failed for {name}: {e}")
            return False

    def classes_exist(self, *names: str) -> bool:
        """True only if every named class is loaded"""
        return all(self.class_exists(name) for name in names)
