#!/usr/bin/env python3
"""
Frida Runtime Module - 에이전트 브리지 기반 Runtime 구현

FridaEngine 세션에 범용 에이전트(agent.py)를 로드하고, Runtime 기본 연산을
RPC 또는 호출 프레임 메시지로 변환합니다.

## 두 가지 경로:
1. **RPC (exports_sync)**: 후킹 콜백 밖에서 호출될 때 (설치, 심볼 조회)
2. **프레임 요청**: 후킹 콜백 안에서 호출될 때
   - 에이전트의 네이티브 스레드가 recv(token).wait()로 대기 중
   - script.post({type: token, op, params})로 요청을 보내면
     그 스레드에서 실행되고 {type:'result'} 메시지로 결과가 돌아옴
   - 원본 호출(call-through), Objective-C 메시지, 블록 호출이 이 경로를 사용

## 스레드 모델:
- Frida 메시지 스레드는 절대 블로킹하지 않음
- 'call' 메시지는 ThreadPoolExecutor 워커에서 처리
- 'result' 메시지는 메시지 스레드에서 바로 Future를 완료
- 워커는 threading.local 프레임 스택으로 현재 호출 토큰을 추적

## 콜백 예외:
콜백에서 예외가 나면 로그만 남기고 호출은 변경 없이 진행합니다.
교체 후킹은 passthrough로 원본을 호출합니다 (대상 프로세스가 Python 예외를 보지 않도록).
release() 이후에 도착한 호출은 정상적인 해제 경합이므로 debug 로그만 남기고 passthrough합니다.
"""

import itertools
import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import BridgeError
from .agent import AGENT_SOURCE
from .frida_engine import FridaEngine
from .runtime import NativeSignature, Pointer, ReturnValue, Runtime
from .targets import MethodMatch

AGENT_NAME = "unpin-agent"


def encode(value: Any) -> str:
    """Python value -> agent wire string"""
    if value is None:
        return "0x0"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Pointer):
        return hex(value)
    if isinstance(value, int):
        return str(value)
    raise TypeError(f"Cannot pass {type(value).__name__} to native code")


def decode(value: Optional[str]) -> Any:
    """Agent wire string -> Python value"""
    if value is None:
        return None
    if "0x" in value:
        return Pointer(int(value, 16))
    return int(value)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class _Frame:
    """One intercepted call whose native thread is waiting for us"""

    def __init__(self, token: str):
        self.token = token
        self.sequence = itertools.count(1)


class FridaRuntime(Runtime):
    """
    Frida 세션 위의 Runtime

    ## 사용 예시:
    ```python
    engine = create_session(device, "com.example.app")
    runtime = FridaRuntime(engine)
    runtime.load()
    ```
    """

    def __init__(self, engine: FridaEngine, max_workers: int = 16, timeout: float = 10.0):
        self.logger = logging.getLogger(__name__)
        self.engine = engine
        self.timeout = timeout
        self.script = None

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="unpin-hook")
        self._ids = itertools.count(1)
        self._listeners: Dict[str, Dict[str, Callable]] = {}
        self._implementations: Dict[str, Callable[..., Any]] = {}
        self._blocks: Dict[str, Callable[..., Any]] = {}
        self._pending: Dict[Tuple[str, int], Future] = {}
        self._pending_lock = threading.Lock()
        self._local = threading.local()

    def load(self):
        """Inject the agent into the attached session"""
        self.script = self.engine.load_script(AGENT_SOURCE, AGENT_NAME, on_message=self._on_message)
        self._check_capabilities()

    def _check_capabilities(self):
        capabilities = self._invoke('capabilities') or {}
        if not capabilities.get('replaceFast'):
            self.logger.warning(
                "Interceptor.replaceFast is not available in this Frida build. "
                "Calling an original from another hook will re-enter its replacement"
            )
            self.engine.record('warnings')

    def close(self):
        """Unload the agent and stop serving calls"""
        if self.script is not None:
            self.engine.unload_script(AGENT_NAME)
            self.script = None
        self._executor.shutdown(wait=False)

    # Message plumbing

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _frames(self) -> List[_Frame]:
        stack = getattr(self._local, "frames", None)
        if stack is None:
            stack = self._local.frames = []
        return stack

    def _post(self, token: str, message: Dict[str, Any]):
        self.script.post(dict(message, type=token))

    def _on_message(self, message: Dict[str, Any], data: Optional[bytes]):
        if message['type'] == 'error':
            self.engine.log_script_error(message)
            return
        if message['type'] != 'send':
            return

        payload = message['payload']
        kind = payload.get('type')

        if kind == 'call':
            self._executor.submit(self._serve, payload)
        elif kind == 'result':
            with self._pending_lock:
                future = self._pending.pop((payload['token'], payload['id']), None)
            if future is None:
                self.logger.debug(f"Late result for {payload['token']}#{payload['id']}")
            elif payload.get('error'):
                future.set_exception(BridgeError(payload['error']))
            else:
                future.set_result(payload.get('result'))

    def _handler(self, kind: str, hook: str) -> Optional[Callable[..., Any]]:
        if kind in ('enter', 'leave'):
            return self._listeners.get(hook, {}).get(kind)
        if kind in ('replace', 'callback'):
            return self._implementations.get(hook)
        if kind == 'block':
            return self._blocks.get(hook)
        raise BridgeError(f"Unknown call kind: {kind}")

    def _serve(self, payload: Dict[str, Any]):
        kind = payload['kind']
        hook = payload['hook']
        frame = _Frame(payload['token'])
        stack = self._frames()
        stack.append(frame)

        reply: Dict[str, Any] = {'op': 'return'}
        try:
            self.engine.record('calls_served')
            handler = self._handler(kind, hook)
            if handler is None:
                # Queued before release(), arrived after it
                self.logger.debug(f"Late {kind} call for released hook {hook}, passing through")
                reply['passthrough'] = True
                return

            values = [decode(v) for v in payload.get('args', [])]

            if kind == 'enter':
                before = list(values)
                handler(values)
                reply['args'] = {
                    str(i): encode(after)
                    for i, (after, prior) in enumerate(zip(values, before))
                    if after is not prior and after != prior
                }
            elif kind == 'leave':
                retval = ReturnValue(decode(payload['retval']))
                handler(retval)
                if retval.replaced:
                    reply['retval'] = encode(retval.value)
            elif kind in ('replace', 'callback'):
                reply['value'] = encode(handler(*values))
            else:
                handler(*values)

        except Exception as e:
            self.logger.error(f"Hook callback failed ({kind} {hook}): {e}")
            self.engine.record('errors')
            reply = {'op': 'return', 'passthrough': True}

        finally:
            stack.pop()
            self._post(frame.token, reply)

    def _invoke(self, op: str, *params: Any) -> Any:
        stack = self._frames()
        if not stack:
            try:
                return getattr(self.script.exports_sync, _snake(op))(*params)
            except Exception as e:
                raise BridgeError(f"{op} failed: {e}") from e

        frame = stack[-1]
        request_id = next(frame.sequence)
        future: Future = Future()
        with self._pending_lock:
            self._pending[(frame.token, request_id)] = future

        self._post(frame.token, {'op': op, 'id': request_id, 'params': list(params)})
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as e:
            with self._pending_lock:
                self._pending.pop((frame.token, request_id), None)
            self.engine.record('warnings')
            raise BridgeError(f"{op} timed out after {self.timeout}s") from e

    # Symbol tables

    def find_export(self, name: str) -> Optional[int]:
        return decode(self._invoke('findExport', name))

    def class_exists(self, name: str) -> bool:
        return bool(self._invoke('classExists', name))

    def method_address(self, class_name: str, selector: str) -> Optional[int]:
        return decode(self._invoke('methodAddress', class_name, selector))

    def enumerate_methods(self, pattern: str) -> List[MethodMatch]:
        return [
            MethodMatch(name=m['name'], address=decode(m['address']))
            for m in self._invoke('enumerateMethods', pattern)
        ]

    # Interception

    def attach(self, address, arity, on_enter=None, on_leave=None):
        token = self._next_id("h")
        self._listeners[token] = {'enter': on_enter, 'leave': on_leave}
        try:
            self._invoke('attach', hex(address), token, arity, on_enter is not None, on_leave is not None)
        except BridgeError:
            del self._listeners[token]
            raise
        return token

    def detach(self, token):
        self._invoke('detach', token)

    def replace(self, address, signature: NativeSignature, implementation):
        token = self._next_id("r")
        self._implementations[token] = implementation
        try:
            self._invoke('replace', hex(address), token, signature.return_type, list(signature.arg_types))
        except BridgeError:
            del self._implementations[token]
            raise
        return token

    def revert(self, token):
        self._invoke('revert', token)

    def release(self, token):
        self._invoke('release', token)
        self._listeners.pop(token, None)
        self._implementations.pop(token, None)

    # Calling native code

    def call(self, address, signature: NativeSignature, args: Sequence[Any], original: bool = False):
        result = self._invoke(
            'call', hex(address), signature.return_type, list(signature.arg_types),
            [encode(a) for a in args], original
        )
        if signature.return_type == 'void':
            return None
        return decode(result)

    # Objective-C

    def objc_class(self, name: str) -> Optional[int]:
        return decode(self._invoke('objcClass', name))

    def objc_send(self, receiver: int, selector: str, *args: Any) -> Any:
        return decode(self._invoke('objcSend', hex(receiver), selector, [encode(a) for a in args]))

    def swap_block(self, block: int, implementation: Callable[..., Any]) -> str:
        token = self._next_id("b")
        self._blocks[token] = implementation
        self._invoke('swapBlock', hex(block), token)
        return token

    def call_block(self, token: str, args: Sequence[Any]) -> Any:
        # The swapped implementation stays registered so a repeat call from the app still reaches it
        return decode(self._invoke('callBlock', token, [encode(a) for a in args]))

    def alloc_utf8(self, text: str) -> int:
        return decode(self._invoke('allocUtf8', text))

    def create_callback(self, signature: NativeSignature, implementation) -> Tuple[str, int]:
        token = self._next_id("c")
        self._implementations[token] = implementation
        address = self._invoke('createCallback', token, signature.return_type, list(signature.arg_types))
        return token, decode(address)
