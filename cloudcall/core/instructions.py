"""
Call-handling instruction tree.

The lifecycle manager answers an inbound call with a short list of these
verbs; a provider adapter renders them into its own markup (TwiML for
Twilio). The set is closed on purpose: it is not a scripting language.
"""

from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass
class Say:
    """Speak text to the caller."""
    text: str


@dataclass
class Dial:
    """Ring one or more client identities at once."""
    targets: list[str] = field(default_factory=list)
    timeout_seconds: Optional[int] = None
    caller_id: Optional[str] = None
    on_no_answer_action: Optional[str] = None  # URL requested when nobody picks up


@dataclass
class Gather:
    """Collect keypad input, optionally while speaking a prompt."""
    num_digits: int = 1
    on_input_action: str = ""
    timeout_seconds: int = 10
    prompt: Optional[Say] = None


@dataclass
class Redirect:
    """Continue call handling at another URL."""
    action: str


@dataclass
class Hangup:
    """End the call."""


Instruction = Union[Say, Dial, Gather, Redirect, Hangup]


def speak_and_hangup(text: str) -> list[Instruction]:
    """Instructions for every terminal decision: say something, then hang up."""
    return [Say(text), Hangup()]
