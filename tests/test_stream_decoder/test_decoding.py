import codecs

from agent_relay.stream_decoder import StreamDecoder, decode_chunk, looks_like_utf16


def test_ansi_color_sequences_are_stripped():
    assert decode_chunk(b"\x1b[32mhello\x1b[0m") == "hello"


def test_cursor_movement_sequences_are_stripped():
    assert decode_chunk(b"\x1b[2K\x1b[1Gprogress 50%") == "progress 50%"


def test_lone_carriage_returns_become_newlines():
    assert decode_chunk(b"a\rb\r\nc") == "a\nb\r\nc"


def test_utf16le_with_bom_matches_utf8_text():
    text = "Hello, agent! 123"
    utf16 = codecs.BOM_UTF16_LE + text.encode("utf-16-le")
    assert decode_chunk(utf16) == decode_chunk(text.encode("utf-8")) == text


def test_utf16le_without_bom_is_detected_from_zero_bytes():
    data = "plain ascii output".encode("utf-16-le")
    assert looks_like_utf16(data)
    assert decode_chunk(data) == "plain ascii output"


def test_utf16be_bom_is_detected():
    data = codecs.BOM_UTF16_BE + "hi".encode("utf-16-be")
    assert looks_like_utf16(data)
    assert decode_chunk(data) == "hi"


def test_utf8_is_not_mistaken_for_utf16():
    assert not looks_like_utf16("ordinary text with ü".encode("utf-8"))
    assert not looks_like_utf16(b"")


def test_raw_mode_keeps_escape_sequences_and_carriage_returns():
    assert decode_chunk(b"\x1b[32mhi\x1b[0m\r", raw=True) == "\x1b[32mhi\x1b[0m\r"


def test_stream_decoder_joins_split_multibyte_characters():
    data = "naïve café".encode("utf-8")
    split = data.index(b"\xc3") + 1
    decoder = StreamDecoder()
    out = decoder.decode(data[:split]) + decoder.decode(data[split:]) + decoder.flush()
    assert out == "naïve café"


def test_stream_decoder_strips_escape_split_across_chunks():
    decoder = StreamDecoder()
    first = decoder.decode(b"ok \x1b[3")
    second = decoder.decode(b"2mgreen\x1b[0m")
    assert first == "ok "
    assert second == "green"


def test_stream_decoder_keeps_crlf_split_across_chunks():
    decoder = StreamDecoder()
    out = decoder.decode(b"line one\r") + decoder.decode(b"\nline two")
    assert out == "line one\r\nline two"


def test_stream_decoder_flushes_trailing_carriage_return_as_newline():
    decoder = StreamDecoder()
    assert decoder.decode(b"spinner\r") == "spinner"
    assert decoder.flush() == "\n"


def test_stream_decoder_reuses_first_chunk_encoding():
    decoder = StreamDecoder()
    first = codecs.BOM_UTF16_LE + "ab".encode("utf-16-le")
    assert decoder.decode(first) == "ab"
    assert decoder.encoding == "utf-16-le"
    odd = "cd".encode("utf-16-le")
    assert decoder.decode(odd[:3]) + decoder.decode(odd[3:]) == "cd"


def test_stream_decoder_raw_mode_passes_bytes_through():
    decoder = StreamDecoder(raw=True)
    assert decoder.decode(b"\x1b[1mbold\r") == "\x1b[1mbold\r"
    assert decoder.flush() == ""


def test_stream_decoder_flush_before_data_is_empty():
    assert StreamDecoder().flush() == ""
