from __future__ import annotations

import ssl

import pytest

import ssap
from ssap.errors import InvalidMessage
from ssap.messages import (
    HANDSHAKE_PAYLOAD,
    build_handshake_payload,
    is_handshake_final,
    parse_message,
    returned_credential,
)
from ssap.pointer_frames import encode_move, encode_press, encode_release, round_delta
from ssap.transport import DEFAULT_ENDPOINTS, Endpoint, endpoints_from_config, insecure_ssl_context


def test_handshake_payload_only_carries_credential_when_given() -> None:
    assert "client-key" not in build_handshake_payload(None)
    payload = build_handshake_payload("abc123")
    assert payload["client-key"] == "abc123"
    assert "client-key" not in HANDSHAKE_PAYLOAD
    assert payload["manifest"]["permissions"] == HANDSHAKE_PAYLOAD["manifest"]["permissions"]


def test_parse_message_coerces_numeric_id() -> None:
    message = parse_message('{"id": 4, "type": "response", "payload": {"appId": "netflix"}, "extra": 1}')
    assert message["id"] == "4"
    assert message["extra"] == 1


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"id": "msg_1"}', '{"type": "response", "payload": 3}'])
def test_parse_message_rejects_malformed_frames(raw: str) -> None:
    with pytest.raises(InvalidMessage):
        parse_message(raw)


def test_credential_needs_non_empty_string() -> None:
    assert returned_credential({"type": "response", "payload": {"client-key": "abc"}}) == "abc"
    assert returned_credential({"type": "response", "payload": {"client-key": ""}}) is None
    assert returned_credential({"type": "registered"}) is None


def test_handshake_final_shapes() -> None:
    assert is_handshake_final({"type": "registered"})
    assert is_handshake_final({"type": "error", "error": "rejected"})
    assert is_handshake_final({"type": "response", "payload": {"client-key": "abc"}})
    assert not is_handshake_final({"type": "response", "payload": {"pairingType": "PROMPT"}})


def test_move_frame_layout() -> None:
    assert encode_move(3, -2) == bytes([1, 0, 3, 0, 0xFE, 0xFF])


def test_move_rounds_half_up_and_clamps() -> None:
    assert round_delta(2.5) == 3
    assert round_delta(-2.5) == -2
    assert round_delta(-0.4) == 0
    assert round_delta(1e9) == 32767
    assert round_delta(-1e9) == -32768
    assert round_delta(float("nan")) == 0


def test_button_frames() -> None:
    assert encode_press() == bytes([2, 1, 0, 0])
    assert encode_release() == bytes([3, 1, 0, 0])


def test_endpoints_prefer_secure_ports() -> None:
    assert [endpoint.url("10.0.0.5") for endpoint in DEFAULT_ENDPOINTS] == [
        "wss://10.0.0.5:3001", "wss://10.0.0.5:3000", "ws://10.0.0.5:3000",
    ]
    assert [endpoint.secure for endpoint in DEFAULT_ENDPOINTS] == [True, True, False]
    assert endpoints_from_config([{"scheme": "ws", "port": "3000"}]) == [Endpoint("ws", 3000)]


def test_self_signed_certificates_are_accepted() -> None:
    context = insecure_ssl_context()
    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_NONE


def test_package_docstring_describes_the_protocol_helpers() -> None:
    assert "Second screen access protocol" in ssap.__doc__
