import pytest

from lbcluster.message import (
    CONTENT_LIMIT,
    LineSplitter,
    Message,
    MessageType,
    fit_content,
    frame_content,
)


def test_fit_content_keeps_short_text():
    assert fit_content("hello") == "hello"


def test_fit_content_trims_to_limit():
    result = fit_content("a" * 1000)
    assert len(result) == CONTENT_LIMIT
    assert result == "a" * CONTENT_LIMIT


def test_fit_content_does_not_split_multibyte_characters():
    result = fit_content("é" * 200)
    encoded = result.encode("utf-8")
    assert len(encoded) <= CONTENT_LIMIT
    assert set(result) == {"é"}


def test_frame_content_format():
    assert frame_content(7, "abc") == "|7|abc|\n"


def test_frame_content_is_trimmed():
    framed = frame_content(1, "x" * 400)
    assert len(framed.encode("utf-8")) == CONTENT_LIMIT
    assert framed.startswith("|1|x")


def test_message_defaults_and_trimming():
    msg = Message(3, "z" * 300)
    assert msg.type is MessageType.TEXT
    assert len(msg.content) == CONTENT_LIMIT


def test_message_type_coerced_from_int():
    msg = Message(1, "x", type=3)
    assert msg.type is MessageType.CONTROL


def test_message_type_rejects_unknown_value():
    with pytest.raises(ValueError):
        Message(1, "x", type=9)


def test_same_id():
    assert Message(5, "a").same_id(Message(5, "b"))
    assert not Message(5, "a").same_id(Message(6, "a"))


def test_splitter_reassembles_fragments():
    splitter = LineSplitter()
    assert splitter.feed("ab") == []
    assert splitter.feed("c\nde") == ["abc"]
    assert splitter.feed("f\n\ng\n") == ["def", "", "g"]


def test_splitter_keeps_cr_by_default():
    assert LineSplitter().feed("one\r\n") == ["one\r"]


def test_splitter_strips_cr_when_asked():
    assert LineSplitter(strip_cr=True).feed("one\r\ntwo\n") == ["one", "two"]


def test_splitter_handles_split_utf8_bytes():
    splitter = LineSplitter()
    raw = "čaj\n".encode("utf-8")
    assert splitter.feed(raw[:1]) == []
    assert splitter.feed(raw[1:]) == ["čaj"]