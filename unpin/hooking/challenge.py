#!/usr/bin/env python3
"""
Challenge Interception Module - 인증 챌린지 가로채기 모듈

비동기 완료 콜백(completion handler)을 가진 신뢰 결정 호출을 가로채서,
애플리케이션의 판단 로직 대신 "신뢰함" 결과를 직접 전달합니다.

## 상태 머신 (호출 1회당):
1. **Entered**: 관찰 후킹이 챌린지 컨텍스트와 완료 콜백을 가진 호출을 감지
2. **Captured**: 완료 콜백의 원본 구현을 CapturedCallback으로 저장하고,
   같은 블록 객체의 구현을 합성 콜백으로 교체
3. **Forged**: 합성 콜백이 호출되면 앱이 넘긴 인자는 무시하고
   - 챌린지에서 서버 trust 객체를 얻고
   - trust로 credential을 만들고
   - 챌린지 sender에 credential을 적용한 뒤
   - 저장된 원본 콜백을 (USE_CREDENTIAL, credential)로 정확히 한 번 호출
   - 위조 단계가 실패하면 앱이 넘긴 인자 그대로 원본 콜백을 한 번 호출
4. **Terminal**: CapturedCallback은 1회용, 이후 상태 폐기

## 원본 Objective-C 흐름 (참고):
```objc
NSURLCredential *credential = [NSURLCredential credentialForTrust:challenge.protectionSpace.serverTrust];
[[challenge sender] useCredential:credential forAuthenticationChallenge:challenge];
completionHandler(NSURLSessionAuthChallengeUseCredential, credential);
```
"""

import logging
import threading
from typing import Any, Optional, Protocol, Sequence

from ..core.exceptions import CallbackConsumed
from ..core.reporter import Reporter
from .runtime import Runtime

# typedef NS_ENUM(NSInteger, NSURLSessionAuthChallengeDisposition)
USE_CREDENTIAL = 0
PERFORM_DEFAULT_HANDLING = 1
CANCEL_AUTHENTICATION_CHALLENGE = 2
REJECT_PROTECTION_SPACE = 3


class CapturedCallback:
    """
    Single-use token for a completion callback's original implementation

    Created when a hook captures the callback, consumed by exactly one
    invoke(); a second invoke raises CallbackConsumed.
    """

    def __init__(self, runtime: Runtime, block: int):
        self.runtime = runtime
        self.block = block
        self.token: Any = None
        self.consumed = False
        self._bound = threading.Event()
        self._lock = threading.Lock()

    def bind(self, token: Any):
        self.token = token
        self._bound.set()

    def invoke(self, *args: Any) -> Any:
        with self._lock:
            if self.consumed:
                raise CallbackConsumed(f"Completion callback {self.block:#x} already invoked")
            self.consumed = True
        self._bound.wait()
        return self.runtime.call_block(self.token, args)


class TrustBroker(Protocol):
    """The three operations the adapter needs from a challenge context"""

    def server_trust(self, challenge: Any) -> Any:
        ...

    def credential_for_trust(self, trust: Any) -> Any:
        ...

    def use_credential(self, challenge: Any, credential: Any) -> None:
        ...


class ObjCTrustBroker:
    """TrustBroker backed by NSURLAuthenticationChallenge / NSURLCredential"""

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self._credential_class: Optional[int] = None

    def server_trust(self, challenge: int) -> int:
        space = self.runtime.objc_send(challenge, "protectionSpace")
        return self.runtime.objc_send(space, "serverTrust")

    def credential_for_trust(self, trust: int) -> int:
        if self._credential_class is None:
            self._credential_class = self.runtime.objc_class("NSURLCredential")
        return self.runtime.objc_send(self._credential_class, "credentialForTrust:", trust)

    def use_credential(self, challenge: int, credential: int):
        sender = self.runtime.objc_send(challenge, "sender")
        self.runtime.objc_send(sender, "useCredential:forAuthenticationChallenge:", credential, challenge)


class ChallengeInterceptor:
    """
    완료 콜백을 가로채 신뢰 결과를 위조하는 어댑터

    ## 사용 예시:
    ```python
    adapter = ChallengeInterceptor(runtime, ObjCTrustBroker(runtime), reporter)

    def on_enter(args):
        adapter.intercept(args.challenge, args.completion_handler)

    installer.install_observation(match, on_enter=on_enter, args=SessionChallengeCall)
    ```
    """

    def __init__(self, runtime: Runtime, broker: TrustBroker, reporter: Reporter,
                 disposition: int = USE_CREDENTIAL):
        self.logger = logging.getLogger(__name__)
        self.runtime = runtime
        self.broker = broker
        self.reporter = reporter
        self.disposition = disposition

    def intercept(self, challenge: Any, completion_block: int) -> CapturedCallback:
        """
        Capture a completion callback and arm the forged completion

        Args:
            challenge: Challenge context carried by the intercepted call
            completion_block: The caller-supplied completion callback

        Returns:
            CapturedCallback: Token for the captured original implementation
        """
        captured = CapturedCallback(self.runtime, completion_block)

        def forged_completion(*app_args: Any) -> None:
            self._forge(challenge, captured, app_args)

        captured.bind(self.runtime.swap_block(completion_block, forged_completion))
        return captured

    def _forge(self, challenge: Any, captured: CapturedCallback, app_args: Sequence[Any]):
        if captured.consumed:
            self.reporter.warn("Completion handler invoked more than once, ignoring repeat call")
            return

        try:
            trust = self.broker.server_trust(challenge)
            credential = self.broker.credential_for_trust(trust)
            self.broker.use_credential(challenge, credential)
            completion_args = (self.disposition, credential)
        except Exception as e:
            # The captured handler still has to run once or the request never finishes
            self.reporter.warn(f"Could not forge credential ({e}), passing the app's decision through")
            completion_args = tuple(app_args)

        try:
            captured.invoke(*completion_args)
        except CallbackConsumed:
            self.reporter.warn("Completion handler invoked more than once, ignoring repeat call")
