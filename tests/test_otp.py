import pytest

from aeo_api.core.exceptions import OTPAttemptsExhaustedError, OTPMismatchError, OTPNotFoundError
from aeo_api.services.otp import VerifyResult, VerifyStatus, generate_code


def _wrong(code: str) -> str:
    return "111111" if code != "111111" else "222222"


def test_generate_code_is_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6
        assert code.isdigit()


def test_generate_code_keeps_leading_zeros(monkeypatch):
    monkeypatch.setattr("aeo_api.services.otp.secrets.randbelow", lambda n: 42)
    assert generate_code() == "000042"


@pytest.mark.asyncio
async def test_issue_sets_expiry_and_budget(issuer, clock):
    record = await issuer.issue("a@b.com")
    assert record.created_at == clock.now
    assert (record.expires_at - record.created_at).total_seconds() == 600
    assert record.attempts_remaining == 5
    assert record.consumed is False


@pytest.mark.asyncio
async def test_correct_code_verifies_exactly_once(issuer):
    record = await issuer.issue("a@b.com")

    first = await issuer.verify("a@b.com", record.code)
    assert first.ok

    second = await issuer.verify("a@b.com", record.code)
    assert second.status is VerifyStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_verify_without_record_is_not_found(issuer):
    result = await issuer.verify("nobody@example.com", "123456")
    assert result.status is VerifyStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_wrong_code_decrements_attempts(issuer, otp_store):
    record = await issuer.issue("a@b.com")

    result = await issuer.verify("a@b.com", _wrong(record.code))
    assert result.status is VerifyStatus.MISMATCH
    assert result.attempts_remaining == 4

    stored = await otp_store.get("a@b.com")
    assert stored.attempts_remaining == 4


@pytest.mark.asyncio
async def test_budget_of_wrong_attempts_exhausts_record(issuer):
    record = await issuer.issue("a@b.com")

    for expected_remaining in range(4, -1, -1):
        result = await issuer.verify("a@b.com", _wrong(record.code))
        assert result.status is VerifyStatus.MISMATCH
        assert result.attempts_remaining == expected_remaining

    # Even the right code is refused now
    result = await issuer.verify("a@b.com", record.code)
    assert result.status is VerifyStatus.ATTEMPTS_EXHAUSTED


@pytest.mark.asyncio
async def test_expired_code_is_rejected_and_discarded(issuer, otp_store, clock):
    record = await issuer.issue("a@b.com")
    clock.advance(601)

    result = await issuer.verify("a@b.com", record.code)
    assert result.status is VerifyStatus.EXPIRED
    assert await otp_store.get("a@b.com") is None

    again = await issuer.verify("a@b.com", record.code)
    assert again.status is VerifyStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_code_valid_at_exact_expiry(issuer, clock):
    record = await issuer.issue("a@b.com")
    clock.advance(600)

    result = await issuer.verify("a@b.com", record.code)
    assert result.ok


@pytest.mark.asyncio
async def test_reissue_invalidates_previous_code(issuer, monkeypatch):
    codes = iter(["123456", "654321"])
    monkeypatch.setattr("aeo_api.services.otp.generate_code", lambda: next(codes))

    old = await issuer.issue("a@b.com")
    new = await issuer.resend("a@b.com")
    assert old.code != new.code

    stale = await issuer.verify("a@b.com", old.code)
    assert stale.status is VerifyStatus.MISMATCH

    fresh = await issuer.verify("a@b.com", new.code)
    assert fresh.ok


@pytest.mark.asyncio
async def test_submitted_code_is_trimmed(issuer):
    record = await issuer.issue("a@b.com")
    result = await issuer.verify("a@b.com", f"  {record.code} ")
    assert result.ok


@pytest.mark.asyncio
async def test_non_ascii_code_is_a_mismatch(issuer):
    await issuer.issue("a@b.com")
    result = await issuer.verify("a@b.com", "１２３４５６")
    assert result.status is VerifyStatus.MISMATCH


def test_raise_for_status_maps_errors():
    VerifyResult(VerifyStatus.SUCCESS).raise_for_status()

    with pytest.raises(OTPMismatchError) as exc_info:
        VerifyResult(VerifyStatus.MISMATCH, attempts_remaining=3).raise_for_status()
    assert exc_info.value.code == "mismatch"
    assert exc_info.value.details == {"attempts_remaining": 3}

    with pytest.raises(OTPAttemptsExhaustedError):
        VerifyResult(VerifyStatus.ATTEMPTS_EXHAUSTED).raise_for_status()

    with pytest.raises(OTPNotFoundError) as exc_info:
        VerifyResult(VerifyStatus.NOT_FOUND).raise_for_status()
    assert exc_info.value.status_code == 400


def test_otp_errors_share_one_message():
    messages = {
        OTPNotFoundError().message,
        OTPAttemptsExhaustedError().message,
        OTPMismatchError(attempts_remaining=1).message,
    }
    assert len(messages) == 1


@pytest.mark.asyncio
async def test_prepared_code_is_inactive_until_activated(issuer, otp_store):
    current = await issuer.issue("a@b.com")
    prepared = issuer.prepare("a@b.com")

    assert await otp_store.get("a@b.com") == current

    await issuer.activate(prepared)
    assert await otp_store.get("a@b.com") == prepared
