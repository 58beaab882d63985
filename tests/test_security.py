"""Tests for webhook signature verification."""
import hashlib
import hmac
import json
import time

import pytest

from freshlocal.errors import WebhookSignatureInvalid
from freshlocal.utils.security import construct_event

from conftest import sign_payload

SECRET = "whsec_abc"
PAYLOAD = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"})


def _signature(payload: str, secret: str, timestamp: int) -> str:
    return hmac.new(
        secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()


class TestConstructEvent:

    def test_valid_signature(self):
        event = construct_event(PAYLOAD, sign_payload(PAYLOAD, SECRET), SECRET)
        assert event["id"] == "evt_1"
        assert isinstance(event, dict)

    def test_bytes_payload(self):
        header = sign_payload(PAYLOAD, SECRET)
        assert construct_event(PAYLOAD.encode(), header, SECRET)["type"] == \
            "payment_intent.succeeded"

    def test_any_matching_v1_accepted(self):
        now = int(time.time())
        header = f"t={now},v1={'0' * 64},v1={_signature(PAYLOAD, SECRET, now)}"
        assert construct_event(PAYLOAD, header, SECRET)

    def test_tampered_body(self):
        header = sign_payload(PAYLOAD, SECRET)
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(PAYLOAD.replace("evt_1", "evt_2"), header, SECRET)

    def test_wrong_secret(self):
        header = sign_payload(PAYLOAD, "whsec_other")
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(PAYLOAD, header, SECRET)

    def test_outside_tolerance(self):
        header = sign_payload(PAYLOAD, SECRET, int(time.time()) - 301)
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(PAYLOAD, header, SECRET, tolerance=300)

    @pytest.mark.parametrize("header", [
        None, "", "garbage", f"t={int(time.time())}", "v1=abc", "t=x,v1=abc",
    ])
    def test_malformed_header(self, header):
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(PAYLOAD, header, SECRET)

    def test_missing_secret(self):
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(PAYLOAD, sign_payload(PAYLOAD, SECRET), "")

    def test_signed_non_event(self):
        payload = json.dumps({"hello": "world"})
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(payload, sign_payload(payload, SECRET), SECRET)

    def test_signed_body_that_is_not_json(self):
        payload = "not json"
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(payload, sign_payload(payload, SECRET), SECRET)

    def test_body_that_is_not_utf8(self):
        body = b'{"type": "x"}\xff\xfe'
        header = f"t={int(time.time())},v1=deadbeef"
        with pytest.raises(WebhookSignatureInvalid):
            construct_event(body, header, SECRET)
