"""Error taxonomy shared by every layer."""


class FlashdeckError(Exception):
    """Base class for all flashdeck errors."""


class ValidationError(FlashdeckError):
    """Malformed card content. Non-fatal: the card is skipped and reported."""

    def __init__(self, source_line: int, messages: list[str]):
        self.source_line = source_line
        self.messages = messages
        super().__init__(f"Line {source_line}: {', '.join(messages)}")


class NotFoundError(FlashdeckError):
    """A referenced deck, card or card state does not exist."""

    def __init__(self, kind: str, identifier: object):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class InvalidRating(FlashdeckError, ValueError):
    """Rating outside Again..Easy. Programmer error."""

    def __init__(self, rating: object):
        self.rating = rating
        super().__init__(f"Invalid rating {rating!r}; expected 1 (Again) to 4 (Easy)")


class InvalidState(FlashdeckError, ValueError):
    """Card state outside New..Relearning. Programmer error."""

    def __init__(self, state: object):
        self.state = state
        super().__init__(f"Invalid card state {state!r}; expected 0 (New) to 3 (Relearning)")
