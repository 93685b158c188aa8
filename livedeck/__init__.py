"""
LiveDeck - Presentation Runtime

Navigates Markdown decks fragment by fragment, runs embedded code blocks
live as recorded terminal sessions, and keeps presenter and audience views
in lockstep through a local server.
"""

__version__ = "0.1.0"
__author__ = "LiveDeck Team"
