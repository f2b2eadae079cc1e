"""Carrier adapters: Twilio, Telnyx, Vonage."""

from callbridge.telephony.adapters.telnyx import TelnyxAdapter
from callbridge.telephony.adapters.twilio import TwilioAdapter
from callbridge.telephony.adapters.vonage import VonageAdapter

__all__ = ["TelnyxAdapter", "TwilioAdapter", "VonageAdapter"]
