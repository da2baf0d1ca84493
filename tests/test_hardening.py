"""Tests for startup self-tests and nonce tracking."""

from pqmessenger.security.hardening import (
    CryptoSelfTest,
    NonceTracker,
    SecurityCheckResult,
    run_self_tests,
)


def test_self_tests_pass_on_real_backend(kyber_provider):
    passed, results = run_self_tests(kyber_provider)

    assert passed
    assert {r.name for r in results} == {"KEM Kyber768", "AES-256-GCM", "CSPRNG"}
    assert all(r.result != SecurityCheckResult.FAIL for r in results)


def test_kem_self_test_fails_on_broken_backend(provider, counting_backend):
    counting_backend.fail_decapsulate = True

    result = CryptoSelfTest.test_kem(provider)

    assert result.result == SecurityCheckResult.FAIL


def test_run_self_tests_reports_failure(provider, counting_backend, caplog):
    counting_backend.fail_encapsulate = True

    with caplog.at_level("ERROR", logger="pqmessenger.security"):
        passed, results = run_self_tests(provider)

    assert not passed
    assert "Self-tests failed" in caplog.text


def test_aes_gcm_self_test():
    assert CryptoSelfTest.test_aes_gcm().result == SecurityCheckResult.PASS


def test_nonce_tracker_detects_reuse():
    tracker = NonceTracker()
    key = b"k" * 32

    assert tracker.check_and_register(key, b"n" * 12)
    assert not tracker.check_and_register(key, b"n" * 12)
    # same nonce under another key is fine
    assert tracker.check_and_register(b"j" * 32, b"n" * 12)


def test_nonce_tracker_forgets_oldest():
    tracker = NonceTracker(max_tracked=3)
    key = b"k" * 32
    for i in range(4):
        assert tracker.check_and_register(key, bytes([i]) * 12)

    assert tracker.tracked_count(key) == 3
    assert tracker.check_and_register(key, bytes([0]) * 12)


def test_nonce_tracker_clear():
    tracker = NonceTracker()
    tracker.check_and_register(b"k" * 32, b"n" * 12)
    tracker.clear()
    assert tracker.tracked_count(b"k" * 32) == 0


def test_nonce_tracker_never_holds_key():
    tracker = NonceTracker()
    key = b"\xaa" * 32
    for i in range(1000):
        tracker.check_and_register(key, i.to_bytes(12, "big"))
    assert key not in tracker._seen
