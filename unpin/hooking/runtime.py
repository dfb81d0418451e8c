#!/usr/bin/env python3
"""
Runtime Module - 계측 대상 프로세스 추상화

Resolver, Installer, Challenge Adapter가 사용하는 최소 기본 연산(primitive) 집합을 정의합니다.

## 구현체:
- **FridaRuntime** (frida_runtime.py): 실제 프로세스에 에이전트 스크립트를 주입하여 동작
- **SyntheticProcess** (tests/common.py): 테스트용 인메모리 프로세스 이미지

## 기본 연산:
1. **심볼 테이블**: find_export, class_exists, method_address, enumerate_methods
2. **가로채기**: attach / detach (관찰), replace / revert (교체), release (자원 해제)
3. **네이티브 호출**: call (original=True면 교체 이전 원본 호출)
4. **Objective-C**: objc_class, objc_send, swap_block, call_block
5. **합성 네이티브 코드**: create_callback, alloc_utf8

## 값 표현:
포인터와 정수는 모두 Python int로 주고받습니다.
콜백 내부에서 호출된 연산은 콜백을 실행 중인 네이티브 스레드에서 수행됩니다.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .targets import MethodMatch


class Pointer(int):
    """An int that came from (or must be passed as) a native pointer"""

    def __repr__(self) -> str:
        return f"Pointer({int(self):#x})"


@dataclass(frozen=True)
class NativeSignature:
    """
    Native calling convention of a hooked function

    Types use Frida's names: 'void', 'pointer', 'int', 'uint', 'bool', ...
    """
    return_type: str
    arg_types: Tuple[str, ...] = ()

    @property
    def arity(self) -> int:
        return len(self.arg_types)


class ReturnValue:
    """Live return value handed to on-leave callbacks"""

    def __init__(self, value: Any):
        self.value = value
        self.replaced = False

    def replace(self, value: Any):
        """Overwrite the value the original's caller will see"""
        self.value = value
        self.replaced = True

    def __repr__(self) -> str:
        return f"ReturnValue({self.value!r}, replaced={self.replaced})"


EnterCallback = Callable[[List[Any]], None]
LeaveCallback = Callable[[ReturnValue], None]


class Runtime(ABC):
    """Primitive operations on one live, instrumented process"""

    # Symbol tables

    @abstractmethod
    def find_export(self, name: str) -> Optional[int]:
        """Address of an exported function, or None"""

    @abstractmethod
    def class_exists(self, name: str) -> bool:
        """True if a class with this name is loaded"""

    @abstractmethod
    def method_address(self, class_name: str, selector: str) -> Optional[int]:
        """Implementation address of a method, or None"""

    @abstractmethod
    def enumerate_methods(self, pattern: str) -> List[MethodMatch]:
        """Every loaded method whose signature matches a wildcard pattern"""

    # Interception

    @abstractmethod
    def attach(self, address: int, arity: int,
               on_enter: Optional[EnterCallback] = None,
               on_leave: Optional[LeaveCallback] = None) -> Any:
        """Install an observation listener; returns an opaque token"""

    @abstractmethod
    def detach(self, token: Any):
        """Stop an observation listener from firing"""

    @abstractmethod
    def replace(self, address: int, signature: NativeSignature,
                implementation: Callable[..., Any]) -> Any:
        """Swap the function at address for implementation; returns an opaque token"""

    @abstractmethod
    def revert(self, token: Any):
        """Restore the function swapped by replace()"""

    @abstractmethod
    def release(self, token: Any):
        """Free resources (synthetic functions) kept for a removed hook"""

    # Calling native code

    @abstractmethod
    def call(self, address: int, signature: NativeSignature,
             args: Sequence[Any], original: bool = False) -> Any:
        """Call native code; original=True bypasses a replacement at address"""

    # Objective-C

    @abstractmethod
    def objc_class(self, name: str) -> Optional[int]:
        """Handle of a loaded class, or None"""

    @abstractmethod
    def objc_send(self, receiver: int, selector: str, *args: Any) -> Any:
        """Send an Objective-C message and return the result handle"""

    @abstractmethod
    def swap_block(self, block: int, implementation: Callable[..., Any]) -> Any:
        """Replace a block's invoke function in place; returns a token for the original"""

    @abstractmethod
    def call_block(self, token: Any, args: Sequence[Any]) -> Any:
        """Invoke the original implementation captured by swap_block()"""

    @abstractmethod
    def alloc_utf8(self, text: str) -> int:
        """Allocate a NUL-terminated string that lives as long as the runtime"""

    @abstractmethod
    def create_callback(self, signature: NativeSignature,
                        implementation: Callable[..., Any]) -> Tuple[Any, int]:
        """Expose a Python function as native code; returns (token, address)"""
