"""Tests for the TwiML / TeXML builders."""

from callbridge.telephony import twiml

PROLOG = '<?xml version="1.0" encoding="UTF-8"?>\n'


def test_ringing_response() -> None:
    assert twiml.ringing_response("https://crm.example.com/cb?a=1&b=2", timeout=20) == (
        PROLOG
        + "<Response>\n"
        + '  <Dial timeout="20" action="https://crm.example.com/cb?a=1&amp;b=2" method="POST">\n'
        + "  </Dial>\n"
        + "</Response>"
    )


def test_forward_response_with_caller_id() -> None:
    document = twiml.forward_response("+14155550111", caller_id="+14155550100")

    assert '<Dial timeout="30" callerId="+14155550100">' in document
    assert "<Number>+14155550111</Number>" in document


def test_forward_response_without_caller_id() -> None:
    assert "callerId" not in twiml.forward_response("+14155550111")


def test_voicemail_defaults() -> None:
    document = twiml.voicemail_response("https://crm.example.com/vm")

    assert '<Say voice="alice" language="ru-RU">Оставьте сообщение после сигнала.</Say>' in document
    assert '<Record maxLength="120" transcribe="true" action="https://crm.example.com/vm" method="POST" />' in document


def test_voicemail_escapes_greeting() -> None:
    document = twiml.voicemail_response(
        "https://crm.example.com/vm", greeting="Tom & Jerry <office>", transcribe=False, voice="female"
    )

    assert "Tom &amp; Jerry &lt;office&gt;" in document
    assert 'voice="female"' in document
    assert "transcribe" not in document


def test_inline_documents() -> None:
    assert twiml.dial_response("+14155550111") == "<Response><Dial>+14155550111</Dial></Response>"
    assert twiml.sip_dial_response("sip:a-1@sip.vapi.ai") == (
        "<Response><Dial><Sip>sip:a-1@sip.vapi.ai</Sip></Dial></Response>"
    )


def test_say_response_escapes_text() -> None:
    assert twiml.say_response("Соединяю <с> менеджером & ждите") == (
        '<Response><Say voice="alice" language="ru-RU">'
        "Соединяю &lt;с&gt; менеджером &amp; ждите</Say></Response>"
    )


def test_play_response_loop() -> None:
    assert twiml.play_response("https://x/a.mp3?x=1&y=2") == (
        "<Response><Play>https://x/a.mp3?x=1&amp;y=2</Play></Response>"
    )
    assert twiml.play_response("https://x/a.mp3", loop=0) == (
        '<Response><Play loop="0">https://x/a.mp3</Play></Response>'
    )
