import logging

import pytest

from unpin.core.exceptions import BridgeError
from unpin.hooking.targets import ExportTarget, MethodTarget, PatternTarget

CHALLENGE_PATTERN = "-[* URLSession:didReceiveChallenge:completionHandler:]"


def test_export_found(process, resolver):
    address = process.define_function("SSLHandshake", lambda ctx: 0)

    target = resolver.resolve(ExportTarget("SSLHandshake"))

    assert target.found
    assert target.addresses == (address,)
    assert target.first.name == "SSLHandshake"


def test_missing_export_resolves_empty(resolver):
    target = resolver.find_export("SSLHandshake")

    assert not target.found
    assert len(target) == 0
    with pytest.raises(LookupError):
        target.first


def test_method_requires_loaded_class(process, resolver):
    address = process.define_method("AFSecurityPolicy", "- setSSLPinningMode:", lambda *a: None)

    assert resolver.find_method("AFSecurityPolicy", "- setSSLPinningMode:").addresses == (address,)
    assert not resolver.find_method("AFSecurityPolicy", "- setValidatesDomainName:").found
    assert not resolver.find_method("TSKPinningValidator", "- evaluateTrust:forHostname:").found


def test_method_target_display_name():
    assert str(MethodTarget("AFSecurityPolicy", "+ policyWithPinningMode:")) == "+[AFSecurityPolicy policyWithPinningMode:]"
    assert str(MethodTarget("TSKPinningValidator", "- evaluateTrust:forHostname:")) == "-[TSKPinningValidator evaluateTrust:forHostname:]"


def test_pattern_matches_every_implementing_class(process, resolver):
    first = process.define_method("SessionDelegate", "- URLSession:didReceiveChallenge:completionHandler:", lambda *a: None)
    second = process.define_method("PinningDelegate", "- URLSession:didReceiveChallenge:completionHandler:", lambda *a: None)
    process.define_method("PinningDelegate", "- URLSession:task:didCompleteWithError:", lambda *a: None)

    target = resolver.resolve(PatternTarget(CHALLENGE_PATTERN))

    assert sorted(target.addresses) == sorted([first, second])
    assert "-[PinningDelegate URLSession:didReceiveChallenge:completionHandler:]" in [m.name for m in target]


def test_pattern_without_matches(resolver):
    assert not resolver.resolve(PatternTarget(CHALLENGE_PATTERN)).found


def test_first_export_falls_back(process, resolver, caplog):
    address = process.define_function("SSL_CTX_set_custom_verify", lambda *a: None)

    with caplog.at_level(logging.INFO):
        target = resolver.find_first_export("SSL_set_custom_verify", "SSL_CTX_set_custom_verify")

    assert target.addresses == (address,)
    assert "SSL_set_custom_verify not found, trying SSL_CTX_set_custom_verify" in caplog.text


def test_first_export_prefers_primary(process, resolver):
    primary = process.define_function("SSL_set_custom_verify", lambda *a: None)
    process.define_function("SSL_CTX_set_custom_verify", lambda *a: None)

    assert resolver.find_first_export("SSL_set_custom_verify", "SSL_CTX_set_custom_verify").addresses == (primary,)


def test_first_export_none_when_nothing_exists(resolver):
    assert resolver.find_first_export("SSL_set_custom_verify", "SSL_CTX_set_custom_verify") is None


def test_runtime_failure_is_treated_as_absence(process, resolver, caplog, monkeypatch):
    def broken(name):
        raise RuntimeError("script destroyed")

    monkeypatch.setattr(process, "find_export", broken)

    with caplog.at_level(logging.WARNING):
        target = resolver.find_export("SSLHandshake")

    assert not target.found
    assert "script destroyed" in caplog.text


def test_bridge_failure_is_not_absence(process, resolver, monkeypatch):
    def dead_session(*args):
        raise BridgeError("findExport failed: script is destroyed")

    monkeypatch.setattr(process, "find_export", dead_session)
    monkeypatch.setattr(process, "class_exists", dead_session)

    with pytest.raises(BridgeError):
        resolver.find_export("SSLHandshake")
    with pytest.raises(BridgeError):
        resolver.find_method("AFSecurityPolicy", "- setSSLPinningMode:")
    with pytest.raises(BridgeError):
        resolver.classes_exist("AFHTTPSessionManager")


def test_unknown_descriptor_is_rejected(resolver):
    with pytest.raises(TypeError):
        resolver.resolve("SSLHandshake")


def test_classes_exist(process, resolver):
    process.define_class("AFSecurityPolicy")

    assert not resolver.classes_exist("AFHTTPSessionManager", "AFSecurityPolicy")
    process.define_class("AFHTTPSessionManager")
    assert resolver.classes_exist("AFHTTPSessionManager", "AFSecurityPolicy")
