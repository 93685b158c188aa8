"""Loading the parsed deck document from disk."""
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from livedeck.core.errors import DeckLoadError
from livedeck.models.deck import Deck

logger = logging.getLogger(__name__)


def load_deck_file(path: Path) -> Deck:
    """Read a parsed deck document (JSON) and build a validated ``Deck``."""
    path = Path(path)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise DeckLoadError(f"Cannot read deck {path}: {e}", path=str(path)) from e
    except json.JSONDecodeError as e:
        raise DeckLoadError(f"Deck {path} is not valid JSON: {e}", path=str(path)) from e

    if not isinstance(document, dict):
        raise DeckLoadError(f"Deck {path} must be a JSON object", path=str(path))

    try:
        deck = Deck.from_document(document)
    except ValidationError as e:
        raise DeckLoadError(f"Deck {path} is invalid: {e.error_count()} error(s)", path=str(path),
                            errors=e.errors(include_url=False, include_context=False)) from e
    except (AttributeError, TypeError) as e:
        raise DeckLoadError(f"Deck {path} has an unexpected structure: {e}", path=str(path)) from e

    logger.info(
        f"📄 Loaded deck {deck.id} from {path.name}: {len(deck)} slides, "
        f"{deck.total_fragments} fragments, {len(deck.code_blocks())} code blocks"
    )
    return deck
