import pytest

from wsserver.utils.protocol import (
    apply_mask, decode_frame, encode_frame, make_binary, make_close, make_ping,
    make_pong, make_text, peek_frame_header, split_frames,
)
from wsserver.utils.types import MAX_PAYLOAD_LENGTH, MessageTooBigError, Opcode, ProtocolError
from wsserver.utils.validate import parse_close_payload, validate_payload_length

LENGTHS = [0, 1, 125, 126, 65535, 65536]


@pytest.mark.parametrize("length", LENGTHS)
@pytest.mark.parametrize("op", list(Opcode))
def test_round_trip_unmasked(op, length):
    payload = bytes(i % 251 for i in range(length))
    frame = decode_frame(encode_frame(op, payload, fin=True))
    assert (frame.fin, frame.opcode, frame.payload) == (True, op, payload)
    assert not frame.masked


@pytest.mark.parametrize("length", LENGTHS)
def test_round_trip_masked_not_final(length):
    payload = b"x" * length
    frame = decode_frame(encode_frame(Opcode.BINARY, payload, fin=False, masked=True))
    assert frame.fin is False
    assert frame.opcode == Opcode.BINARY
    assert frame.payload == payload
    assert frame.masked and len(frame.masking_key) == 4


@pytest.mark.parametrize("length, header", [(125, 2), (126, 4), (65535, 4), (65536, 10)])
def test_length_tiers(length, header):
    data = encode_frame(Opcode.TEXT, b"a" * length)
    assert len(data) == header + length
    assert data[0] == 0x81
    if header == 4:
        assert data[1] == 126
        assert int.from_bytes(data[2:4], "big") == length
    elif header == 10:
        assert data[1] == 127
        assert int.from_bytes(data[2:10], "big") == length
    else:
        assert data[1] == length


def test_masked_header_layout():
    data = encode_frame(Opcode.TEXT, b"Hello", masked=True, masking_key=b"\x37\xfa\x21\x3d")
    # RFC 6455 section 5.7 example
    assert data == bytes.fromhex("818537fa213d7f9f4d5158")


def test_unmasked_header_layout():
    assert encode_frame(Opcode.TEXT, b"Hello") == bytes.fromhex("810548656c6c6f")
    assert encode_frame(Opcode.TEXT, b"Hel", fin=False) == bytes.fromhex("010348656c")


def test_random_masking_key_is_used():
    data = encode_frame(Opcode.BINARY, b"\x00" * 8, masked=True)
    key = data[2:6]
    assert data[6:] == key * 2


def test_mask_is_self_inverse():
    key = b"\x01\x02\x03\x04"
    payload = bytes(range(256)) * 3
    masked = apply_mask(payload, key)
    assert masked != payload
    assert apply_mask(masked, key) == payload


def test_mask_rejects_bad_key():
    with pytest.raises(ProtocolError):
        apply_mask(b"abc", b"\x00\x01")


def test_decode_invalid_opcode():
    with pytest.raises(ProtocolError, match="opcode"):
        decode_frame(b"\x83\x00")


def test_decode_reserved_bits():
    with pytest.raises(ProtocolError, match="Reserved"):
        decode_frame(b"\xc1\x00")


@pytest.mark.parametrize("data", [b"", b"\x81", b"\x81\x7e\x00", b"\x81\x05abc", b"\x81\x85\x00\x00"])
def test_decode_truncated(data):
    with pytest.raises(ProtocolError):
        decode_frame(data)


def test_decode_rejects_length_beyond_safe_range():
    header = b"\x82\x7f" + (MAX_PAYLOAD_LENGTH + 1).to_bytes(8, "big")
    with pytest.raises(MessageTooBigError):
        decode_frame(header)
    with pytest.raises(MessageTooBigError):
        peek_frame_header(header)


def test_largest_safe_length_is_accepted_by_header():
    header = b"\x82\x7f" + MAX_PAYLOAD_LENGTH.to_bytes(8, "big")
    assert peek_frame_header(header) == 10 + MAX_PAYLOAD_LENGTH


def test_validate_payload_length():
    validate_payload_length(0)
    validate_payload_length(MAX_PAYLOAD_LENGTH)
    with pytest.raises(MessageTooBigError):
        validate_payload_length(MAX_PAYLOAD_LENGTH + 1)


def test_peek_frame_header():
    data = encode_frame(Opcode.TEXT, b"a" * 300, masked=True)
    assert peek_frame_header(data[:1]) is None
    assert peek_frame_header(data[:3]) is None
    assert peek_frame_header(data[:4]) == len(data)
    # Opcode is not checked when peeking
    assert peek_frame_header(b"\x83\x00") == 2


def test_split_frames_keeps_remainder():
    first = encode_frame(Opcode.TEXT, b"one", masked=True)
    second = encode_frame(Opcode.PING, b"two", masked=True)
    frames, rest = split_frames(first + second + second[:3])
    assert frames == [first, second]
    assert rest == second[:3]
    assert split_frames(b"") == ([], b"")


def test_split_frames_stops_at_oversized_length():
    first = encode_frame(Opcode.TEXT, b"one", masked=True)
    oversized = b"\x82\xff" + (MAX_PAYLOAD_LENGTH + 1).to_bytes(8, "big")
    frames, rest = split_frames(first + oversized)
    assert frames == [first]
    assert rest == oversized
    with pytest.raises(MessageTooBigError):
        split_frames(rest)


def test_mask_matches_bytewise_xor():
    key = b"\x37\xfa\x21\x3d"
    payload = bytes(i % 256 for i in range(1027))
    expected = bytes(b ^ key[i % 4] for i, b in enumerate(payload))
    assert apply_mask(payload, key) == expected
    assert apply_mask(b"", key) == b""
    # leading zero bytes survive the integer round trip
    assert apply_mask(key[:2], key) == b"\x00\x00"


def test_builders():
    text = decode_frame(make_text("héllo"))
    assert (text.opcode, text.fin, text.payload) == (Opcode.TEXT, True, "héllo".encode())

    cont = decode_frame(make_text("x", fin=False, first=False))
    assert (cont.opcode, cont.fin) == (Opcode.CONTINUATION, False)

    binary = decode_frame(make_binary(b"\x00\xff", first=True))
    assert binary.opcode == Opcode.BINARY

    assert decode_frame(make_ping(b"p")).opcode == Opcode.PING
    assert decode_frame(make_pong(b"p")).payload == b"p"

    close = decode_frame(make_close(1001, "bye"))
    assert close.opcode == Opcode.CLOSE
    assert close.payload == b"\x03\xe9bye"
    assert parse_close_payload(close.payload) == (1001, "bye")


def test_masked_builder():
    frame = decode_frame(make_ping(b"abc", masked=True))
    assert frame.masked
    assert frame.payload == b"abc"


def test_parse_close_payload_without_code():
    assert parse_close_payload(b"") == (1005, "")
