import pytest

from pipeline.errors import AuthenticationError, MissingSignatureError
from pipeline.webhook_auth import sign_payload, verify_signature

SECRET = "whsec_unit"
BODY = b'{"event":"payment_link.paid","payload":{}}'


def test_valid_signature_passes():
    verify_signature(BODY, sign_payload(BODY, SECRET), SECRET)


def test_signature_is_hex_sha256():
    signature = sign_payload(BODY, SECRET)
    assert len(signature) == 64
    int(signature, 16)


def test_uppercase_signature_accepted():
    verify_signature(BODY, sign_payload(BODY, SECRET).upper(), SECRET)


def test_missing_header_raises_missing_signature():
    with pytest.raises(MissingSignatureError):
        verify_signature(BODY, None, SECRET)
    with pytest.raises(MissingSignatureError):
        verify_signature(BODY, "", SECRET)


def test_tampered_body_rejected():
    signature = sign_payload(BODY, SECRET)
    with pytest.raises(AuthenticationError) as exc:
        verify_signature(BODY + b" ", signature, SECRET)
    assert not isinstance(exc.value, MissingSignatureError)


def test_wrong_secret_rejected():
    with pytest.raises(AuthenticationError):
        verify_signature(BODY, sign_payload(BODY, "other"), SECRET)


def test_unconfigured_secret_rejected():
    with pytest.raises(AuthenticationError):
        verify_signature(BODY, sign_payload(BODY, ""), "")


def test_bypass_skips_verification_and_logs(mocker):
    logger = mocker.patch("pipeline.webhook_auth.logger")
    verify_signature(BODY, None, SECRET, bypass=True)
    logger.warning.assert_called_once()
    assert logger.warning.call_args.args[0] == "webhook_signature_bypassed"
    assert logger.warning.call_args.kwargs["security_event"] is True


@pytest.mark.parametrize("header", ["ÿ" * 64, "é" + sign_payload(BODY, SECRET)[1:]])
def test_non_ascii_signature_is_a_mismatch(header):
    with pytest.raises(AuthenticationError) as exc:
        verify_signature(BODY, header, SECRET)
    assert not isinstance(exc.value, MissingSignatureError)
