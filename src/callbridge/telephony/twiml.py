"""
TwiML / TeXML call-flow documents.

Twilio reads TwiML and Telnyx TeXML accepts the same verbs, so both carriers
share these builders.
"""

from xml.sax.saxutils import escape, quoteattr

DEFAULT_VOICEMAIL_GREETING = "Оставьте сообщение после сигнала."
DEFAULT_LANGUAGE = "ru-RU"


def _twiml(body: str) -> str:
    return '<?xml version="1.0" encoding="UTF-8"?>\n<Response>\n' + body + "\n</Response>"


def _inline(body: str) -> str:
    # Twilio's call update endpoint takes TwiML without the XML prolog
    return f"<Response>{body}</Response>"


def ringing_response(webhook_url: str, timeout: int = 30) -> str:
    return _twiml(
        f'  <Dial timeout="{int(timeout)}" action={quoteattr(webhook_url)} method="POST">\n'
        "  </Dial>"
    )


def forward_response(to: str, caller_id: str | None = None, timeout: int = 30) -> str:
    caller_attr = f" callerId={quoteattr(caller_id)}" if caller_id else ""
    return _twiml(
        f'  <Dial timeout="{int(timeout)}"{caller_attr}>\n'
        f"    <Number>{escape(to)}</Number>\n"
        "  </Dial>"
    )


def voicemail_response(
    webhook_url: str,
    greeting: str | None = None,
    max_length: int = 120,
    transcribe: bool = True,
    voice: str = "alice",
    language: str = DEFAULT_LANGUAGE,
) -> str:
    transcribe_attr = ' transcribe="true"' if transcribe else ""
    return _twiml(
        f"  <Say voice={quoteattr(voice)} language={quoteattr(language)}>"
        f"{escape(greeting or DEFAULT_VOICEMAIL_GREETING)}</Say>\n"
        f'  <Record maxLength="{int(max_length)}"{transcribe_attr}'
        f' action={quoteattr(webhook_url)} method="POST" />'
    )


def dial_response(to: str) -> str:
    return _inline(f"<Dial>{escape(to)}</Dial>")


def sip_dial_response(sip_uri: str) -> str:
    return _inline(f"<Dial><Sip>{escape(sip_uri)}</Sip></Dial>")


def say_response(text: str, voice: str = "alice", language: str = DEFAULT_LANGUAGE) -> str:
    return _inline(f"<Say voice={quoteattr(voice)} language={quoteattr(language)}>{escape(text)}</Say>")


def play_response(audio_url: str, loop: int | None = None) -> str:
    # loop="0" repeats until the call's TwiML is replaced
    loop_attr = f' loop="{int(loop)}"' if loop is not None else ""
    return _inline(f"<Play{loop_attr}>{escape(audio_url)}</Play>")
