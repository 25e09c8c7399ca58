"""flashdeck: spaced repetition for markdown flashcards."""

from flashdeck.consts import VERSION

__version__ = VERSION
