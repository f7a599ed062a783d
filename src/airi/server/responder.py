"""Canned reply generation standing in for a real language model."""

from __future__ import annotations

import itertools
import random
from typing import Any, Callable, Dict, Optional, Sequence

TEMPLATES: Sequence[str] = (
    'Hello! You said: "{text}". I\'m AIRI and I\'m working perfectly with enhanced features!',
    'I understand you\'re saying: "{text}". My voice and memory systems are active!',
    'Thanks for the message: "{text}". I can remember our conversation and speak back to you!',
    'You wrote: "{text}". I\'m ready to chat, remember everything, and use my voice!',
)

VOICE_ACKNOWLEDGEMENT = "I heard your voice message! Voice processing is working."

# Picks one template out of the sequence.
Chooser = Callable[[Sequence[str]], str]


def random_chooser(seed: Optional[int] = None) -> Chooser:
    rng = random.Random(seed)
    return rng.choice


def round_robin_chooser() -> Chooser:
    counter = itertools.count()

    def choose(templates: Sequence[str]) -> str:
        return templates[next(counter) % len(templates)]

    return choose


class CannedResponder:
    """Select a template and interpolate the user's text into it.

    Parameters
    ----------
    templates : Sequence[str]
        Format strings with a ``{text}`` placeholder.
    chooser : Chooser | None
        Selection strategy; defaults to an unseeded random choice.
    """

    def __init__(
        self,
        templates: Sequence[str] = TEMPLATES,
        chooser: Optional[Chooser] = None,
        *,
        provider: str = "openai",
        model: str = "gpt-4",
    ) -> None:
        if not templates:
            raise ValueError("at least one template is required")
        self.templates = tuple(templates)
        self.chooser = chooser or random_chooser()
        self.provider = provider
        self.model = model

    def generate(self, text: str) -> str:
        return self.chooser(self.templates).format(text=text)


def create_from_config(cfg: Dict[str, Any]) -> CannedResponder:
    """Create a CannedResponder from the ``responder`` config section."""
    r_cfg = (cfg or {}).get("responder", {}) if isinstance(cfg, dict) else {}
    strategy = str(r_cfg.get("strategy", "random")).lower()
    if strategy == "round_robin":
        chooser = round_robin_chooser()
    elif strategy == "random":
        chooser = random_chooser(r_cfg.get("seed"))
    else:
        raise ValueError(f"Unknown responder strategy: {strategy!r}")
    return CannedResponder(
        chooser=chooser,
        provider=str(r_cfg.get("provider", "openai")),
        model=str(r_cfg.get("model", "gpt-4")),
    )
