from safescan.features.scan.services.sandbox.logs import (
    STDERR,
    STDOUT,
    demux_log_stream,
    frame,
    mux_frames,
    tail,
)


def test_interleaved_frames_are_split_per_stream():
    buffer = (
        frame(STDOUT, b"hello ")
        + frame(STDERR, b"warn: slow\n")
        + frame(STDOUT, b"world")
        + frame(STDERR, b"done\n")
    )

    stdout, stderr = demux_log_stream(buffer)

    assert stdout == "hello world"
    assert stderr == "warn: slow\ndone\n"


def test_header_layout_is_id_padding_and_big_endian_length():
    encoded = frame(STDERR, b"abc")
    assert encoded[:8] == bytes([2, 0, 0, 0, 0, 0, 0, 3])
    assert encoded[8:] == b"abc"


def test_truncated_trailing_frame_is_ignored():
    buffer = frame(STDOUT, b"complete") + frame(STDOUT, b"cut off here")[:-4]

    stdout, stderr = demux_log_stream(buffer)

    assert stdout == "complete"
    assert stderr == ""


def test_partial_header_is_ignored():
    buffer = frame(STDOUT, b"ok") + bytes([1, 0, 0])
    assert demux_log_stream(buffer) == ("ok", "")


def test_unframed_buffer_is_plain_stdout():
    raw = b'{"success": true}\n'
    assert demux_log_stream(raw) == ('{"success": true}\n', "")


def test_empty_buffer():
    assert demux_log_stream(b"") == ("", "")


def test_mux_skips_empty_payloads():
    assert mux_frames([(STDOUT, b""), (STDERR, b"x")]) == frame(STDERR, b"x")


def test_invalid_utf8_is_replaced_not_raised():
    stdout, _ = demux_log_stream(frame(STDOUT, b"caf\xff"))
    assert stdout.startswith("caf")


def test_tail_keeps_the_end():
    assert tail("abcdef", limit=3) == "def"
    assert tail("abc", limit=10) == "abc"
