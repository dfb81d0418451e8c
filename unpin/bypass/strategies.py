#!/usr/bin/env python3
"""
Bypass Strategies Module - 피닝 우회 전략 테이블

알려진 피닝 메커니즘마다 하나의 전략이 있으며, 각 전략은
Resolver + Installer + Challenge Adapter와 정적인 대상 이름 테이블만 사용합니다.

## 프레임워크 후킹:
### AFNetworking:
- AFSecurityPolicy의 pinning mode를 AFSSLPinningModeNone(0)으로 강제
- setAllowInvalidCertificates: 인자를 YES로 강제

### NSURLSession:
- `-[* URLSession:didReceiveChallenge:completionHandler:]`를 구현한 모든 클래스
- Challenge Adapter로 completionHandler를 가로채 credential 위조

### TrustKit:
- `-[TSKPinningValidator evaluateTrust:forHostname:]` 반환값을
  TSKTrustDecisionShouldAllowConnection(0)으로 변경

### SSLCertificateChecker-PhoneGap-Plugin (Cordova):
- `-[CustomURLConnectionDelegate isFingerprintTrusted:]` 반환값을 YES로 변경

## 저수준 후킹 (SSL Kill Switch 2 기법):
### iOS 9 이하 (SecureTransport):
- SSLSetSessionOption: kSSLSessionOptionBreakOnServerAuth 변경 차단
- SSLCreateContext: 생성 직후 원본 setter로 BreakOnServerAuth 활성화
- SSLHandshake: errSSLServerAuthCompared(-9481)면 한 번 더 호출하여 검증 건너뛰기

### iOS 10:
- tls_helper_create_peer_trust: 항상 noErr 반환
- nw_tls_create_peer_trust: 관찰만 가능 (동작하는 우회 없음, 알려진 한계)

### iOS 11 이상 (BoringSSL):
- SSL_set_custom_verify (없으면 SSL_CTX_set_custom_verify):
  앱이 넘긴 콜백 대신 항상 ssl_verify_ok를 반환하는 콜백 설치
- SSL_get_psk_identity: 고정된 "fakePSKidentity" 반환

## 참고:
- https://github.com/nabla-c0d3/ssl-kill-switch2
- https://nabla-c0d3.github.io/blog/2017/02/05/ios10-ssl-kill-switch/
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Type

from ..core.exceptions import UnpinError
from ..core.reporter import Reporter
from ..hooking.challenge import ChallengeInterceptor, ObjCTrustBroker
from ..hooking.interceptor import (
    ArgumentStruct,
    Hook,
    HookInstaller,
    ObservationHook,
    ReplacementHook
)
from ..hooking.resolver import SymbolResolver
from ..hooking.runtime import NativeSignature, ReturnValue, Runtime
from ..hooking.targets import PatternTarget


class Outcome(Enum):
    """Result of running one strategy"""
    HOOKED = "hooked"
    ABSENT = "absent"
    LIMITED = "limited"
    FAILED = "failed"


@dataclass
class StrategyResult:
    """
    전략 하나의 실행 결과

    Attributes:
        key: 전략 키 (예: 'afnetworking')
        outcome: HOOKED / ABSENT / LIMITED / FAILED
        hooks: 설치된 후킹 (FAILED면 비어 있음)
        detail: 실패 원인 또는 한계 설명
    """
    key: str
    outcome: Outcome
    hooks: List[Hook] = field(default_factory=list)
    detail: str = ""


# Argument layouts of the hooked signatures

class SelectorCall(ArgumentStruct):
    """-[Class method:(value)] and +[Class method:(value)]"""
    fields = ('receiver', 'selector', 'value')


class SessionChallengeCall(ArgumentStruct):
    """-[Delegate URLSession:didReceiveChallenge:completionHandler:]"""
    fields = ('receiver', 'selector', 'session', 'challenge', 'completion_handler')


# SecureTransport
K_SSL_SESSION_OPTION_BREAK_ON_SERVER_AUTH = 0
NO_ERR = 0
ERR_SSL_SERVER_AUTH_COMPARED = -9481

SSL_SET_SESSION_OPTION = NativeSignature('int', ('pointer', 'int', 'bool'))
SSL_CREATE_CONTEXT = NativeSignature('pointer', ('pointer', 'int', 'int'))
SSL_HANDSHAKE = NativeSignature('int', ('pointer',))
TLS_HELPER_CREATE_PEER_TRUST = NativeSignature('int', ('pointer', 'bool', 'pointer'))

# BoringSSL
SSL_VERIFY_OK = 0
PLACEHOLDER_PSK_IDENTITY = "fakePSKidentity"

SSL_CUSTOM_VERIFY_CALLBACK = NativeSignature('int', ('pointer', 'pointer'))
SSL_SET_CUSTOM_VERIFY = NativeSignature('void', ('pointer', 'int', 'pointer'))
SSL_GET_PSK_IDENTITY = NativeSignature('pointer', ('pointer',))


class Strategy:
    """
    우회 전략 기본 클래스

    ## 실행 흐름:
    1. apply()가 install()을 호출
    2. install()은 observe() / replace()로 후킹 설치 (대상이 없으면 아무것도 안 함)
    3. 설치된 후킹이 없으면 ABSENT, 있으면 HOOKED (limitation이 있으면 LIMITED)
    4. UnpinError 발생 시 이미 설치한 후킹을 제거하고 FAILED

    ## 하위 클래스 속성:
    - key: CLI / 설정에서 쓰는 이름
    - description: 사람이 읽는 설명
    - group: 로그 헤더 (같은 그룹은 연속 실행)
    - limitation: 알려진 한계 (관찰 전용 전략)
    """

    key = ""
    description = ""
    group = ""
    limitation: Optional[str] = None

    def __init__(self, runtime: Runtime, resolver: SymbolResolver,
                 installer: HookInstaller, reporter: Reporter):
        self.logger = logging.getLogger(__name__)
        self.runtime = runtime
        self.resolver = resolver
        self.installer = installer
        self.reporter = reporter
        self._installed: List[Hook] = []

    def install(self):
        raise NotImplementedError

    def apply(self) -> StrategyResult:
        """Run the strategy and classify what happened"""
        try:
            self.install()
        except UnpinError as e:
            self._rollback()
            self.logger.error(f"Strategy {self.key} failed: {e}")
            return StrategyResult(self.key, Outcome.FAILED, detail=str(e))

        hooks = list(self._installed)
        if not hooks:
            return StrategyResult(self.key, Outcome.ABSENT)
        if self.limitation:
            return StrategyResult(self.key, Outcome.LIMITED, hooks, detail=self.limitation)
        return StrategyResult(self.key, Outcome.HOOKED, hooks)

    def _rollback(self):
        for hook in reversed(self._installed):
            try:
                hook.remove()
            except UnpinError as e:
                self.logger.error(f"Rollback of {hook} failed: {e}")
        self._installed.clear()

    def observe(self, target, on_enter=None, on_leave=None,
                args: Type[ArgumentStruct] = ArgumentStruct) -> ObservationHook:
        hook = self.installer.install_observation(target, on_enter=on_enter, on_leave=on_leave, args=args)
        self._installed.append(hook)
        return hook

    def replace(self, target, signature: NativeSignature,
                implementation: Callable[..., Any]) -> ReplacementHook:
        hook = self.installer.install_replacement(target, signature, implementation)
        self._installed.append(hook)
        return hook


class AFNetworking(Strategy):
    """AFNetworking: force AFSSLPinningModeNone and allow invalid certificates"""

    key = "afnetworking"
    description = "AFSecurityPolicy pinning mode and invalid certificates"
    group = "Hooking common framework methods"

    GATE_CLASSES = ("AFHTTPSessionManager", "AFSecurityPolicy")
    POLICY_CLASS = "AFSecurityPolicy"
    MODE_SELECTORS = (
        "- setSSLPinningMode:",
        "+ policyWithPinningMode:",
        "+ policyWithPinningMode:withPinnedCertificates:",
    )
    ALLOW_INVALID_SELECTOR = "- setAllowInvalidCertificates:"

    # typedef NS_ENUM(NSUInteger, AFSSLPinningMode) {
    #     AFSSLPinningModeNone,
    #     AFSSLPinningModePublicKey,
    #     AFSSLPinningModeCertificate,
    # };
    PINNING_MODE_NONE = 0

    def install(self):
        if not self.resolver.classes_exist(*self.GATE_CLASSES):
            return

        self.reporter.log("Found AFNetworking library. Hooking known pinning methods.")

        for selector in self.MODE_SELECTORS:
            target = self.resolver.find_method(self.POLICY_CLASS, selector)
            if target.found:
                self.observe(target, on_enter=self._force_mode(str(target.descriptor)), args=SelectorCall)

        target = self.resolver.find_method(self.POLICY_CLASS, self.ALLOW_INVALID_SELECTOR)
        if target.found:
            self.observe(target, on_enter=self._force_allow_invalid(str(target.descriptor)), args=SelectorCall)

    def _force_mode(self, name: str):
        reporter = self.reporter

        def on_enter(args: SelectorCall):
            reporter.log_if_verbose(f"[AFNetworking] Called {name} with mode {args.value:#x}")
            if args.value != self.PINNING_MODE_NONE:
                reporter.log_if_verbose(f"[AFNetworking] Altered {name} mode to 0x0")
                args.value = self.PINNING_MODE_NONE

        return on_enter

    def _force_allow_invalid(self, name: str):
        reporter = self.reporter

        def on_enter(args: SelectorCall):
            reporter.log_if_verbose(f"[AFNetworking] Called {name} with allow {args.value:#x}")
            if args.value == 0:
                reporter.log_if_verbose(f"[AFNetworking] Altered {name} allow to 0x1")
                # [policy setAllowInvalidCertificates:YES]
                args.value = 1

        return on_enter


class NSURLSession(Strategy):
    """NSURLSession delegates: forge a trusted answer for every auth challenge"""

    key = "nsurlsession"
    description = "NSURLSession delegate challenge handlers"
    group = "Hooking common framework methods"

    PATTERN = "-[* URLSession:didReceiveChallenge:completionHandler:]"

    def install(self):
        matches = self.resolver.resolve(PatternTarget(self.PATTERN))
        if not matches.found:
            return

        self.reporter.log(f"Found {len(matches)} NSURLSession based classes. Hooking known pinning methods.")
        adapter = ChallengeInterceptor(self.runtime, ObjCTrustBroker(self.runtime), self.reporter)

        for match in matches:
            self.observe(match, on_enter=self._intercept(adapter, match.name), args=SessionChallengeCall)

    def _intercept(self, adapter: ChallengeInterceptor, name: str):
        reporter = self.reporter

        def on_enter(args: SessionChallengeCall):
            reporter.log_if_verbose(f"[NSURLSession] Called {name}, ensuring pinning is passed")
            adapter.intercept(args.challenge, args.completion_handler)

        return on_enter


class TrustKit(Strategy):
    """TrustKit: report every evaluation as TSKTrustDecisionShouldAllowConnection"""

    key = "trustkit"
    description = "TSKPinningValidator trust evaluation"
    group = "Hooking common framework methods"

    CLASS = "TSKPinningValidator"
    SELECTOR = "- evaluateTrust:forHostname:"
    SHOULD_ALLOW_CONNECTION = 0

    def install(self):
        if not self.resolver.class_exists(self.CLASS):
            return

        target = self.resolver.find_method(self.CLASS, self.SELECTOR)
        if not target.found:
            return

        self.reporter.log("Found TrustKit. Hooking known pinning methods.")
        name = str(target.descriptor)
        reporter = self.reporter

        def on_leave(retval: ReturnValue):
            reporter.log_if_verbose(f"[TrustKit] Called {name} with result {retval.value:#x}")
            if retval.value != self.SHOULD_ALLOW_CONNECTION:
                reporter.log_if_verbose(f"[TrustKit] Altered {name} result to 0x0")
                retval.replace(self.SHOULD_ALLOW_CONNECTION)

        self.observe(target, on_leave=on_leave)


class CordovaCertificateChecker(Strategy):
    """SSLCertificateChecker-PhoneGap-Plugin: every fingerprint is trusted"""

    key = "cordova"
    description = "CustomURLConnectionDelegate fingerprint check"
    group = "Hooking common framework methods"

    CLASS = "CustomURLConnectionDelegate"
    SELECTOR = "- isFingerprintTrusted:"

    def install(self):
        if not self.resolver.class_exists(self.CLASS):
            return

        target = self.resolver.find_method(self.CLASS, self.SELECTOR)
        if not target.found:
            return

        self.reporter.log("Found SSLCertificateChecker-PhoneGap-Plugin. Hooking known pinning methods.")
        name = str(target.descriptor)
        reporter = self.reporter

        def on_leave(retval: ReturnValue):
            reporter.log_if_verbose(f"[SSLCertificateChecker-PhoneGap-Plugin] Called {name} with result {retval.value:#x}")
            if retval.value == 0:
                reporter.log_if_verbose(f"[SSLCertificateChecker-PhoneGap-Plugin] Altered {name} result to 0x1")
                retval.replace(1)

        self.observe(target, on_leave=on_leave)


class SSLSetSessionOption(Strategy):
    """Refuse changes to kSSLSessionOptionBreakOnServerAuth"""

    key = "ssl_set_session_option"
    description = "SecureTransport SSLSetSessionOption()"
    group = "Hooking lower level SSL methods"

    def install(self):
        target = self.resolver.find_export("SSLSetSessionOption")
        if not target.found:
            return

        setter = self.installer.native_function(target, SSL_SET_SESSION_OPTION, original=True)
        reporter = self.reporter

        def set_session_option(context, option, value):
            if option == K_SSL_SESSION_OPTION_BREAK_ON_SERVER_AUTH:
                reporter.log_if_verbose(
                    "Called SSLSetSessionOption(), removing ability to modify kSSLSessionOptionBreakOnServerAuth."
                )
                return NO_ERR
            return setter(context, option, value)

        self.replace(target, SSL_SET_SESSION_OPTION, set_session_option)


class SSLCreateContext(Strategy):
    """Enable break-on-server-auth on every new context so validation is skipped"""

    key = "ssl_create_context"
    description = "SecureTransport SSLCreateContext()"
    group = "Hooking lower level SSL methods"

    def install(self):
        target = self.resolver.find_export("SSLCreateContext")
        setter_target = self.resolver.find_export("SSLSetSessionOption")
        if not (target.found and setter_target.found):
            return

        create_context = self.installer.native_function(target, SSL_CREATE_CONTEXT, original=True)
        # The pre-swap setter: our own SSLSetSessionOption replacement refuses this option
        set_session_option = self.installer.native_function(setter_target, SSL_SET_SESSION_OPTION, original=True)
        reporter = self.reporter

        def ssl_create_context(alloc, protocol_side, connection_type):
            context = create_context(alloc, protocol_side, connection_type)
            set_session_option(context, K_SSL_SESSION_OPTION_BREAK_ON_SERVER_AUTH, 1)
            reporter.log_if_verbose(
                "Called SSLCreateContext(), setting kSSLSessionOptionBreakOnServerAuth to disable cert validation."
            )
            return context

        self.replace(target, SSL_CREATE_CONTEXT, ssl_create_context)


class SSLHandshake(Strategy):
    """Resume a handshake that paused for server authentication"""

    key = "ssl_handshake"
    description = "SecureTransport SSLHandshake()"
    group = "Hooking lower level SSL methods"

    def install(self):
        target = self.resolver.find_export("SSLHandshake")
        if not target.found:
            return

        handshake = self.installer.native_function(target, SSL_HANDSHAKE, original=True)
        reporter = self.reporter

        def ssl_handshake(context):
            result = handshake(context)
            if result == ERR_SSL_SERVER_AUTH_COMPARED:
                reporter.log_if_verbose("Called SSLHandshake(), calling again to skip certificate validation.")
                return handshake(context)
            return result

        self.replace(target, SSL_HANDSHAKE, ssl_handshake)


class TLSHelperCreatePeerTrust(Strategy):
    """iOS 10 tls_helper_create_peer_trust(): always noErr"""

    key = "tls_helper_create_peer_trust"
    description = "iOS 10 TLS helper peer trust"
    group = "Hooking lower level TLS methods"

    def install(self):
        target = self.resolver.find_export("tls_helper_create_peer_trust")
        if not target.found:
            return

        reporter = self.reporter

        def create_peer_trust(hdsk, server, trust_ref):
            reporter.log_if_verbose("Called tls_helper_create_peer_trust(), returning noErr.")
            return NO_ERR

        self.replace(target, TLS_HELPER_CREATE_PEER_TRUST, create_peer_trust)


class NWTLSCreatePeerTrust(Strategy):
    """
    nw_tls_create_peer_trust(): observed only

    It always returns 0 but has internal logic that a plain replacement
    does not survive, so calls are logged and left alone.
    """

    key = "nw_tls_create_peer_trust"
    description = "iOS 10 network peer trust (observation only)"
    group = "Hooking lower level TLS methods"
    limitation = "no working bypass implemented yet"

    def install(self):
        target = self.resolver.find_export("nw_tls_create_peer_trust")
        if not target.found:
            return

        reporter = self.reporter

        def on_enter(args: ArgumentStruct):
            reporter.log_if_verbose(f"Called nw_tls_create_peer_trust(), {self.limitation}.")

        self.observe(target, on_enter=on_enter)


class BoringSSLCustomVerify(Strategy):
    """BoringSSL: swap every custom verify callback for one that always succeeds"""

    key = "boringssl"
    description = "BoringSSL custom verify and PSK identity"
    group = "Hooking BoringSSL methods"

    SET_CUSTOM_VERIFY_NAMES = ("SSL_set_custom_verify", "SSL_CTX_set_custom_verify")
    GET_PSK_IDENTITY = "SSL_get_psk_identity"

    def install(self):
        get_psk_identity = self.resolver.find_export(self.GET_PSK_IDENTITY)
        set_custom_verify = self.resolver.find_first_export(*self.SET_CUSTOM_VERIFY_NAMES)
        if set_custom_verify is None or not get_psk_identity.found:
            return

        reporter = self.reporter
        setter = self.installer.native_function(set_custom_verify, SSL_SET_CUSTOM_VERIFY, original=True)

        def verify_callback(ssl, out_alert):
            reporter.log_if_verbose("Called custom SSL context verify callback, returning SSL_VERIFY_NONE.")
            return SSL_VERIFY_OK

        callback = self.installer.native_callback(SSL_CUSTOM_VERIFY_CALLBACK, verify_callback, name="verify_callback")
        identity = self.runtime.alloc_utf8(PLACEHOLDER_PSK_IDENTITY)

        def set_custom_verify_replacement(ssl, mode, app_callback):
            reporter.log_if_verbose(f"Called {set_custom_verify.first.name}(), setting custom callback.")
            setter(ssl, mode, callback.address)

        def get_psk_identity_replacement(ssl):
            reporter.log_if_verbose(f'Called {self.GET_PSK_IDENTITY}(), returning "{PLACEHOLDER_PSK_IDENTITY}".')
            return identity

        self.replace(set_custom_verify, SSL_SET_CUSTOM_VERIFY, set_custom_verify_replacement)
        self.replace(get_psk_identity, SSL_GET_PSK_IDENTITY, get_psk_identity_replacement)


STRATEGIES: List[Type[Strategy]] = [
    AFNetworking,
    NSURLSession,
    TrustKit,
    CordovaCertificateChecker,
    SSLSetSessionOption,
    SSLCreateContext,
    SSLHandshake,
    TLSHelperCreatePeerTrust,
    NWTLSCreatePeerTrust,
    BoringSSLCustomVerify,
]


def strategy_keys() -> List[str]:
    """Keys of every known strategy, in execution order"""
    return [strategy.key for strategy in STRATEGIES]
