import pytest

from security import build_manifest, sign_manifest, validate_mercadopago_webhook

SECRET = "mp-test-secret"
TS = 1704910000
DATA_ID = "123456789"
REQUEST_ID = "bb56a2f1-6aae-46ac-982e-9dcd3581d08e"


def signed_header(data_id=DATA_ID, request_id=REQUEST_ID, ts=TS, secret=SECRET):
    digest = sign_manifest(build_manifest(data_id, request_id, str(ts)), secret)
    return f"ts={ts},v1={digest}"


def validate(x_signature, x_request_id=REQUEST_ID, data_id=DATA_ID, now=TS + 10, secret=SECRET):
    return validate_mercadopago_webhook(x_signature, x_request_id, data_id, secret=secret, now=now, max_age=300)


def test_manifest_format():
    assert build_manifest("42", "req-1", "1700000000") == "id:42;request-id:req-1;ts:1700000000;"


def test_valid_signature_accepted():
    result = validate(signed_header())
    assert result.is_valid is True
    assert result.error is None


def test_header_with_spaces_accepted():
    header = signed_header().replace(",", ", ")
    assert validate(header).is_valid is True


def test_flipped_digest_character_rejected():
    header = signed_header()
    last = header[-1]
    tampered = header[:-1] + ("0" if last != "0" else "1")

    result = validate(tampered)

    assert result.is_valid is False
    assert result.error.startswith("Firma HMAC inválida")


def test_changed_request_id_rejected():
    result = validate(signed_header(), x_request_id=REQUEST_ID[:-1] + "f")
    assert result.is_valid is False
    assert "Firma HMAC inválida" in result.error


def test_changed_data_id_rejected():
    result = validate(signed_header(), data_id="123456780")
    assert result.is_valid is False
    assert "Firma HMAC inválida" in result.error


def test_wrong_secret_rejected():
    assert validate(signed_header(secret="otro-secreto")).is_valid is False


@pytest.mark.parametrize("signature,request_id,data_id,reason", [
    (None, REQUEST_ID, DATA_ID, "Header x-signature faltante"),
    ("", REQUEST_ID, DATA_ID, "Header x-signature faltante"),
    ("ts=1,v1=abc", None, DATA_ID, "Header x-request-id faltante"),
    ("ts=1,v1=abc", REQUEST_ID, None, "data.id faltante en el body"),
])
def test_missing_inputs(signature, request_id, data_id, reason):
    result = validate(signature, x_request_id=request_id, data_id=data_id)
    assert result.is_valid is False
    assert result.error == reason


def test_missing_secret_fails_closed():
    result = validate(signed_header(), secret="")
    assert result.is_valid is False
    assert result.error == "MP_WEBHOOK_SECRET no configurado"


@pytest.mark.parametrize("header", [
    "v1=abcdef",
    f"ts={TS}",
    "ts=abc,v1=abcdef",
    "garbage",
    f"ts={TS},v1=déadbeef",
    "ts=1700000000,v1=dead\xffbeef",
    "ts=17²,v1=deadbeef",
])
def test_malformed_header(header):
    result = validate(header)
    assert result.is_valid is False
    assert result.error == "Formato de x-signature inválido"


def test_stale_webhook_rejected_even_with_good_signature():
    result = validate(signed_header(), now=TS + 301)
    assert result.is_valid is False
    assert result.error.startswith("Webhook expirado")


def test_webhook_at_max_age_still_accepted():
    assert validate(signed_header(), now=TS + 300).is_valid is True


def test_forged_digest_reports_hmac_failure():
    """ts=1700000000,v1=deadbeef: bad digest wins over the stale timestamp."""
    result = validate("ts=1700000000,v1=deadbeef", now=1700000000 + 10_000)
    assert result.is_valid is False
    assert result.error == "Firma HMAC inválida - webhook potencialmente falso"
