#!/usr/bin/env python3
"""
Hook Installer Module - 관찰/교체 후킹 설치 모듈

해석된(resolved) 주소에 두 종류의 후킹을 설치하고, 각 후킹의 안전한 해제를 책임집니다.

## 후킹 종류:
1. **Observation (관찰)**: 원본 함수는 그대로 실행
   - on_enter: 원본 실행 전, 타입이 지정된 인자 구조체를 받아 인자 변경 가능
   - on_leave: 원본 실행 후, ReturnValue를 받아 반환값 변경 가능
2. **Replacement (교체)**: 원본 함수를 합성 함수로 완전히 대체
   - 합성 함수는 NativeFunction(original=True)으로 원본을 직접 호출 가능

## 설치 규칙:
- 주소가 없거나 0이면 UnresolvableTarget
- 이미 교체된 주소를 다시 교체하면 InstallationConflict (덮어쓰기 금지)
- 같은 주소에 관찰 후킹 여러 개는 허용 (각각 독립적으로 실행)

## 동시성 / 해제:
- 콜백은 임의의 스레드에서 동시에, 재진입적으로 호출될 수 있음 (숨겨진 락 없음)
- 각 후킹은 실행 중(in-flight) 호출 수를 추적
- remove()는 즉시 설치를 해제하지만, 합성 함수 등 자원 해제는
  마지막 실행 중 호출이 끝날 때까지 지연
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from ..core.exceptions import InstallationConflict, UnresolvableTarget
from .runtime import NativeSignature, ReturnValue, Runtime
from .targets import MethodMatch, ResolvedTarget


class ArgumentStruct:
    """
    Fixed-arity, named view over a live argument list

    Subclasses list their field names; attribute reads and writes go
    straight to the underlying list, so on_enter mutations reach the
    original function.

    ```python
    class PinningModeCall(ArgumentStruct):
        fields = ('receiver', 'selector', 'mode')

    def on_enter(args: PinningModeCall):
        args.mode = 0
    ```
    """

    fields: Tuple[str, ...] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        for index, name in enumerate(cls.fields):
            setattr(cls, name, property(
                lambda self, i=index: self._values[i],
                lambda self, value, i=index: self._values.__setitem__(i, value)
            ))

    def __init__(self, values: List[Any]):
        if len(values) < len(self.fields):
            raise ValueError(
                f"{type(self).__name__} expects {len(self.fields)} arguments, got {len(values)}"
            )
        self._values = values

    @classmethod
    def arity(cls) -> int:
        return len(cls.fields)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{name}={self._values[i]!r}" for i, name in enumerate(self.fields))
        return f"{type(self).__name__}({pairs})"


class NativeFunction:
    """Callable proxy for a native function inside the target process"""

    def __init__(self, runtime: Runtime, address: int, signature: NativeSignature,
                 name: str = "", original: bool = False):
        self.runtime = runtime
        self.address = address
        self.signature = signature
        self.name = name or f"{address:#x}"
        self.original = original

    def __call__(self, *args: Any) -> Any:
        if len(args) != self.signature.arity:
            raise TypeError(f"{self.name} takes {self.signature.arity} arguments, got {len(args)}")
        return self.runtime.call(self.address, self.signature, args, original=self.original)

    def __repr__(self) -> str:
        kind = "original " if self.original else ""
        return f"<NativeFunction {kind}{self.name}>"


class Hook:
    """
    설치된 후킹 하나 (관찰/교체 공통 부분)

    ## 상태:
    - installed: 설치 완료, 콜백 실행 중
    - removed: 설치 해제됨, 새 호출은 원본으로만 흐름
    - released: 런타임 자원까지 해제됨 (in-flight 호출이 0일 때만)
    """

    kind = "hook"

    def __init__(self, runtime: Runtime, name: str, address: int):
        self.logger = logging.getLogger(__name__)
        self.runtime = runtime
        self.name = name
        self.address = address
        self.token: Any = None
        self.in_flight = 0
        self.removed = False
        self.released = False
        self._removing = False
        self._lock = threading.Lock()
        self._on_removed: Optional[Callable[["Hook"], None]] = None

    @contextmanager
    def _track(self):
        with self._lock:
            self.in_flight += 1
        try:
            yield
        finally:
            with self._lock:
                self.in_flight -= 1
                release = self.removed and not self.released and self.in_flight == 0
                if release:
                    self.released = True
            if release:
                self._release()

    def remove(self):
        """
        Uninstall the hook

        Release of the synthetic function is deferred while any call is
        still running through this hook.
        """
        with self._lock:
            if self.removed or self._removing:
                return
            self._removing = True

        try:
            self._uninstall()
        except Exception:
            # Still installed in the process, so a later remove() must retry
            with self._lock:
                self._removing = False
            raise

        with self._lock:
            self.removed = True
            self._removing = False
        if self._on_removed:
            self._on_removed(self)

        with self._lock:
            release = not self.released and self.in_flight == 0
            if release:
                self.released = True
        if release:
            self._release()
        else:
            self.logger.debug(f"Deferring release of {self.name}, {self.in_flight} call(s) in flight")

    def _uninstall(self):
        raise NotImplementedError

    def _release(self):
        self.runtime.release(self.token)
        self.logger.debug(f"Released {self.kind} hook on {self.name}")

    def __repr__(self) -> str:
        state = "removed" if self.removed else "installed"
        return f"<{type(self).__name__} {self.name} at {self.address:#x} {state}>"


class ObservationHook(Hook):
    """Runs callbacks around the original function without replacing it"""

    kind = "observation"

    def __init__(self, runtime: Runtime, name: str, address: int,
                 on_enter: Optional[Callable[[Any], None]],
                 on_leave: Optional[Callable[[ReturnValue], None]],
                 args: Type[ArgumentStruct]):
        super().__init__(runtime, name, address)
        self.on_enter = on_enter
        self.on_leave = on_leave
        self.args = args

    def handle_enter(self, values: List[Any]):
        with self._track():
            if self.removed or self.on_enter is None:
                return
            self.on_enter(self.args(values))

    def handle_leave(self, retval: ReturnValue):
        with self._track():
            if self.removed or self.on_leave is None:
                return
            self.on_leave(retval)

    def _uninstall(self):
        self.runtime.detach(self.token)


class ReplacementHook(Hook):
    """Supersedes the original function with a synthetic implementation"""

    kind = "replacement"

    def __init__(self, runtime: Runtime, name: str, address: int,
                 signature: NativeSignature, implementation: Callable[..., Any]):
        super().__init__(runtime, name, address)
        self.signature = signature
        self.implementation = implementation
        self.original = NativeFunction(runtime, address, signature, name=name, original=True)

    def handle_call(self, *args: Any) -> Any:
        with self._track():
            if self.removed:
                return self.original(*args)
            return self.implementation(*args)

    def _uninstall(self):
        self.runtime.revert(self.token)


class NativeCallback:
    """
    A Python function exposed to the target process as native code

    Native code keeps the address after the owning hook is gone (e.g. a
    TLS context holding a verify callback), so callbacks are never freed.
    """

    def __init__(self, token: Any, address: int, signature: NativeSignature, name: str):
        self.token = token
        self.address = address
        self.signature = signature
        self.name = name

    def __repr__(self) -> str:
        return f"<NativeCallback {self.name} at {self.address:#x}>"


Installable = Union[ResolvedTarget, MethodMatch, int]


class HookInstaller:
    """
    Runtime 위에서 후킹을 설치하는 설치기

    ## 주요 기능:
    - install_observation(): 관찰 후킹 설치
    - install_replacement(): 교체 후킹 설치 (주소당 하나)
    - native_function(): 네이티브 함수 호출 프록시 생성

    ## 교체 레지스트리:
    주소 → ReplacementHook 딕셔너리를 락으로 보호합니다.
    서로 다른 주소의 설치는 직렬화하지 않습니다 (런타임이 주소별 원자성 보장).
    """

    def __init__(self, runtime: Runtime):
        self.logger = logging.getLogger(__name__)
        self.runtime = runtime
        self._replaced: Dict[int, ReplacementHook] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _locate(target: Installable) -> Tuple[str, int]:
        if isinstance(target, ResolvedTarget):
            if not target.found:
                raise UnresolvableTarget(str(target.descriptor))
            target = target.first
        if isinstance(target, MethodMatch):
            name, address = target.name, target.address
        else:
            name, address = f"{target:#x}" if target else "null", target
        if not address:
            raise UnresolvableTarget(name)
        return name, address

    def native_function(self, target: Installable, signature: NativeSignature,
                        original: bool = False) -> NativeFunction:
        """
        Build a callable proxy for native code

        Args:
            target: Where the function lives
            signature: Calling convention
            original: Bypass any replacement installed at the address

        Returns:
            NativeFunction: Proxy usable from inside hook callbacks
        """
        name, address = self._locate(target)
        return NativeFunction(self.runtime, address, signature, name=name, original=original)

    def native_callback(self, signature: NativeSignature, implementation: Callable[..., Any],
                        name: str = "callback") -> NativeCallback:
        """
        Expose a Python function as a native function pointer

        Args:
            signature: Calling convention native callers will use
            implementation: Python function answering the calls
            name: Display name for logging

        Returns:
            NativeCallback: Holds the native address to hand to native code
        """
        token, address = self.runtime.create_callback(signature, implementation)
        self.logger.debug(f"Created native callback {name} at {address:#x}")
        return NativeCallback(token, address, signature, name)

    def install_observation(self, target: Installable,
                            on_enter: Optional[Callable[[Any], None]] = None,
                            on_leave: Optional[Callable[[ReturnValue], None]] = None,
                            args: Type[ArgumentStruct] = ArgumentStruct) -> ObservationHook:
        """
        Attach callbacks around a function; the original always runs

        Args:
            target: Where to attach
            on_enter: Receives an `args` struct bound to the live arguments
            on_leave: Receives the live ReturnValue
            args: ArgumentStruct subclass describing the function's arguments

        Returns:
            ObservationHook: Installed hook

        Raises:
            UnresolvableTarget: If the target has no address
        """
        name, address = self._locate(target)
        hook = ObservationHook(self.runtime, name, address, on_enter, on_leave, args)
        hook.token = self.runtime.attach(
            address,
            args.arity(),
            on_enter=hook.handle_enter if on_enter else None,
            on_leave=hook.handle_leave if on_leave else None
        )
        self.logger.debug(f"Attached observation hook to {name} at {address:#x}")
        return hook

    def install_replacement(self, target: Installable, signature: NativeSignature,
                            implementation: Callable[..., Any]) -> ReplacementHook:
        """
        Swap a function for a synthetic implementation

        Args:
            target: Function to replace
            signature: Calling convention shared by original and replacement
            implementation: Called with the original's arguments, must return
                a value of the original's return type

        Returns:
            ReplacementHook: Installed hook (hook.original calls the pre-swap code)

        Raises:
            UnresolvableTarget: If the target has no address
            InstallationConflict: If the address is already replaced
        """
        name, address = self._locate(target)

        with self._lock:
            owner = self._replaced.get(address)
            if owner is not None:
                raise InstallationConflict(address, owner.name)

            hook = ReplacementHook(self.runtime, name, address, signature, implementation)
            hook.token = self.runtime.replace(address, signature, hook.handle_call)
            hook._on_removed = self._forget
            self._replaced[address] = hook

        self.logger.debug(f"Replaced {name} at {address:#x}")
        return hook

    def _forget(self, hook: Hook):
        with self._lock:
            if self._replaced.get(hook.address) is hook:
                del self._replaced[hook.address]

    def replacement_at(self, address: int) -> Optional[ReplacementHook]:
        with self._lock:
            return self._replaced.get(address)

    def replacements(self) -> Sequence[ReplacementHook]:
        with self._lock:
            return list(self._replaced.values())
