from unpin.core.reporter import Reporter


def test_verbose_reporter_logs_everything(bypass_log):
    reporter = Reporter()

    reporter.log("Hooking lower level SSL methods")
    reporter.log_if_verbose("Called SSLHandshake()")

    assert "Hooking lower level SSL methods" in bypass_log.text
    assert "Called SSLHandshake()" in bypass_log.text


def test_quiet_reporter_drops_per_call_messages(bypass_log):
    reporter = Reporter(quiet=True)

    reporter.log("Found TrustKit. Hooking known pinning methods.")
    reporter.log_if_verbose("[TrustKit] Called -[TSKPinningValidator evaluateTrust:forHostname:]")

    assert "Found TrustKit" in bypass_log.text
    assert "evaluateTrust" not in bypass_log.text


def test_job_prefix(bypass_log):
    reporter = Reporter(quiet=True).for_job(3)

    reporter.log("Hooking BoringSSL methods")

    assert reporter.quiet
    assert "[3] Hooking BoringSSL methods" in bypass_log.text
