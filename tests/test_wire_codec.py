from __future__ import annotations

import pytest

from ipc_pyssh.core.errors import FramingError, TransportError
from ipc_pyssh.wire import codec
from ipc_pyssh.wire.codec import NEED_MORE_DATA, FrameReader, Message, Opcode, decode, encode


def test_encode_matches_documented_frame_layout() -> None:
    assert encode(Opcode.EVAL, [b"return 1+1"]) == b"EVAL\n1\n10\nreturn 1+1"
    assert encode("OK") == b"OK\n0\n"
    assert encode(Opcode.CALL, [b"f", b"", b"a\nb"]) == b"CALL\n3\n1\nf0\n3\na\nb"


def test_encode_accepts_str_args_as_utf8() -> None:
    assert encode(Opcode.RETURNED, ["é"]) == b"RETURNED\n1\n2\n\xc3\xa9"


def test_encode_rejects_opcode_with_newline() -> None:
    with pytest.raises(ValueError):
        encode("EV\nAL")


@pytest.mark.parametrize(
    "args",
    [
        (),
        (b"",),
        (b"", b""),
        (b"\x00\x01\xff\n\n",),
        (b"12\n", b"3\nxyz"),
        (bytes(range(256)) * 3,),
    ],
)
def test_round_trip_preserves_opcode_and_args(args) -> None:  # type: ignore[no-untyped-def]
    for opcode in Opcode:
        frame = encode(opcode, args)
        assert decode(frame) == (Message(opcode=opcode.value, args=tuple(args)), len(frame))


def test_every_strict_prefix_needs_more_data() -> None:
    frame = encode(Opcode.STORE, [b"double", b"return int(args[0]) * 2\n", b"", b"\x00"])
    for cut in range(len(frame)):
        assert decode(frame[:cut]) is NEED_MORE_DATA
    assert decode(frame) == (Message("STORE", (b"double", b"return int(args[0]) * 2\n", b"", b"\x00")), len(frame))


def test_decode_returns_first_message_and_leaves_remainder() -> None:
    first = encode(Opcode.OK)
    second = encode(Opcode.RETURNED, [b"42"])
    buf = first + second
    message, consumed = decode(buf)  # type: ignore[misc]
    assert message == Message("OK", ())
    assert consumed == len(first)
    assert decode(buf[consumed:]) == (Message("RETURNED", (b"42",)), len(second))


def test_decode_does_not_mutate_buffer() -> None:
    buf = bytearray(encode(Opcode.CALL, [b"x"])[:-1])
    snapshot = bytes(buf)
    assert decode(buf) is NEED_MORE_DATA
    assert bytes(buf) == snapshot


def test_decode_accepts_memoryview() -> None:
    frame = encode(Opcode.DIED, [b"boom"])
    assert decode(memoryview(frame)) == (Message("DIED", (b"boom",)), len(frame))


def test_need_more_data_is_falsy_singleton() -> None:
    assert not NEED_MORE_DATA
    assert repr(NEED_MORE_DATA) == "NEED_MORE_DATA"


@pytest.mark.parametrize(
    "frame",
    [
        b"EVAL\nx\n",
        b"EVAL\n-1\n",
        b"EVAL\n1\nabc\n",
        b"EVAL\n1\n 3\nabc",
    ],
)
def test_non_numeric_count_or_length_is_fatal(frame: bytes) -> None:
    with pytest.raises(FramingError) as exc_info:
        decode(frame)
    assert exc_info.value.code == "FRAMING_ERROR"


def test_unterminated_garbage_field_is_detected_early() -> None:
    with pytest.raises(FramingError):
        decode(b"EVAL\n1\nzz")
    with pytest.raises(FramingError):
        decode(b"EVAL\n" + b"9" * 25)


def test_frame_reader_reassembles_byte_by_byte_delivery() -> None:
    frames = encode(Opcode.RETURNED, [b"a", b"bc"]) + encode(Opcode.OK)
    chunks = [frames[i : i + 1] for i in range(len(frames))]

    def _read(_n: int) -> bytes:
        return chunks.pop(0) if chunks else b""

    reader = FrameReader(_read, chunk_size=1)
    assert reader.read_message() == Message("RETURNED", (b"a", b"bc"))
    assert reader.read_message() == Message("OK", ())
    assert reader.read_message() is None
    assert reader.pending == 0


def test_frame_reader_eof_mid_message_is_transport_error() -> None:
    data = [encode(Opcode.RETURNED, [b"abc"])[:-1]]

    def _read(_n: int) -> bytes:
        return data.pop(0) if data else b""

    reader = FrameReader(_read)
    with pytest.raises(TransportError) as exc_info:
        reader.read_message()
    assert exc_info.value.code == "UNEXPECTED_EOF"


def test_frame_reader_rejects_non_positive_chunk_size() -> None:
    with pytest.raises(ValueError):
        FrameReader(lambda n: b"", chunk_size=0)


def test_frame_reader_scans_each_field_of_a_large_frame_a_bounded_number_of_times(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    count = 2000
    frame = encode(Opcode.RETURNED, [b"x" * 10] * count)
    stream = [frame[i : i + 64] for i in range(0, len(frame), 64)]
    line_reads = []
    original = codec._read_line

    def _counting(buf, pos):  # type: ignore[no-untyped-def]
        line_reads.append(pos)
        return original(buf, pos)

    def _read(_n: int) -> bytes:
        return stream.pop(0) if stream else b""

    monkeypatch.setattr(codec, "_read_line", _counting)
    chunks = len(stream)
    message = FrameReader(_read, chunk_size=64).read_message()

    assert message is not None
    assert len(message.args) == count
    assert set(message.args) == {b"x" * 10}
    # 每个字段完整解析一次，外加每次补读时对未完成字段的一次重试
    assert len(line_reads) <= count + 2 + chunks + 1


def test_frame_reader_resumes_across_frames() -> None:
    frames = encode(Opcode.RETURNED, [b"a" * 100, b"b" * 100]) + encode(Opcode.RETURNED, [b"c"])
    stream = [frames[i : i + 7] for i in range(0, len(frames), 7)]

    def _read(_n: int) -> bytes:
        return stream.pop(0) if stream else b""

    reader = FrameReader(_read, chunk_size=7)
    assert reader.read_message() == Message("RETURNED", (b"a" * 100, b"b" * 100))
    assert reader.read_message() == Message("RETURNED", (b"c",))
    assert reader.read_message() is None
