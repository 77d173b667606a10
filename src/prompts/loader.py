from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from relay.errors import ConfigError

PROMPT_DIR = Path(__file__).resolve().parent

AGENT_PROMPT_FILE = "agent_system.txt"
EXTRACTION_PROMPT_FILE = "extraction_system.txt"


@lru_cache(maxsize=None)
def load_prompt(filename: str) -> str:
    """Load a prompt text file shipped next to this module, stripped of surrounding whitespace."""

    path = PROMPT_DIR / filename
    if not path.is_file():
        raise ConfigError(f"Prompt file not found: {filename}")
    return path.read_text(encoding="utf-8").strip()
