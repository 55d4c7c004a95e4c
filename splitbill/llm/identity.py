from splitbill.models.schemas import FreeTextParticipant, Participant, PlatformParticipant

# Ways people refer to themselves in chat ("gua bayar parkir", "aku yang bayar")
SELF_REFERENCES = {"gua", "gue", "aku", "saya", "i", "me"}


def sender_display_name(username: str | None, first_name: str, last_name: str | None = None) -> str:
    """Telegram @username if set, otherwise the full name."""
    if username:
        return username
    return f"{first_name} {last_name or ''}".strip()


def normalize_name(name: str, sender: str) -> str:
    name = name.strip()
    if name.startswith("@"):
        name = name[1:]
    if name.lower() in SELF_REFERENCES:
        return sender
    return name


def to_participant(name: str, sender: str, sender_id: int) -> Participant:
    """Map a name from the chat or the model to a member descriptor.

    Only the sender can be tied to a Telegram account; every other name is
    recorded as free text.
    """
    name = normalize_name(name, sender)
    if name == sender:
        return PlatformParticipant(external_id=sender_id, display_name=sender)
    return FreeTextParticipant(display_name=name)
