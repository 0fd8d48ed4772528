"""
Alert Dispatcher - Rate-Limited Fan-Out.

Maps a HazardState to:
- a visual banner update (never rate limited)
- a haptic pulse (per-channel cooldown)
- a spoken phrase (per-channel cooldown, sanitized text)

Enforces:
- Each channel's cooldown clock is independent
- Clear hides the banner and never buzzes or speaks
- Oscillating Clear/Obstacle frames cannot beat the cooldown

Effects are described, not performed; a sink applies them on
whatever thread the platform requires.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional, Dict, Callable, Tuple
from loguru import logger

from pathguard.core.contracts import HazardKind, HazardState, VisualUpdate, AlertEffects
from pathguard.core.config import AlertConfig


_UNSPEAKABLE = re.compile(r"[^A-Za-z0-9 ]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_speech_text(text: str) -> str:
    """Strip symbols and punctuation a speech synthesizer would read aloud."""
    cleaned = _UNSPEAKABLE.sub("", text)
    return _WHITESPACE.sub(" ", cleaned).strip()


# (message, color) per hazard; {label} only used for labelled obstacles
DEFAULT_MESSAGES: Dict[HazardKind, Tuple[str, str]] = {
    HazardKind.OBSTACLE_CLOSE: ("STOP!", "#FFA500"),
    HazardKind.TILT_TOO_HIGH: ("Tilt Phone Down ↘", "#FFFF00"),
    HazardKind.STAIRCASE: ("Descending Stairs Ahead ⬇", "#00FFFF"),
    HazardKind.DEEP_DROP_OFF: ("Very Deep Surface Detected", "#FF0000"),
    HazardKind.TILT_TOO_LOW: ("Tilt Phone Up ↗", "#FFFF00"),
}
LABELLED_OBSTACLE_MESSAGE = "STOP! ({label})"


@dataclass
class ChannelState:
    """Last emission time of one rate-limited channel."""
    name: str
    cooldown_seconds: float
    enabled: bool = True
    last_emitted: Optional[float] = None
    emissions: int = 0

    def ready(self, now: float) -> bool:
        if not self.enabled:
            return False
        if self.last_emitted is None:
            return True
        return now - self.last_emitted >= self.cooldown_seconds

    def mark(self, now: float):
        self.last_emitted = now
        self.emissions += 1


class AlertDispatcher:
    """
    Turns hazard states into channel effects.

    Usage:
        dispatcher = AlertDispatcher(AlertConfig())
        effects = dispatcher.dispatch(HazardState(HazardKind.STAIRCASE))
        sink.apply(effects)
    """

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        messages: Optional[Dict[HazardKind, Tuple[str, str]]] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            config: Cooldowns (milliseconds)
            clock: Monotonic clock in seconds (injectable for tests)
            messages: Override (text, color) per hazard kind
        """
        self.config = config or AlertConfig()
        self._clock = clock
        self._messages = dict(DEFAULT_MESSAGES)
        if messages:
            self._messages.update(messages)

        self._haptic = ChannelState("haptic", self.config.haptic_cooldown_ms / 1000.0)
        self._speech = ChannelState("speech", self.config.speech_cooldown_ms / 1000.0)
        self._last_kind: HazardKind = HazardKind.CLEAR

    def set_channels(self, haptic_enabled: bool, speech_enabled: bool):
        """Enable or disable the rate-limited channels at runtime."""
        self._haptic.enabled = haptic_enabled
        self._speech.enabled = speech_enabled

    def visual_for(self, hazard: HazardState) -> VisualUpdate:
        """Banner text and color; a direct function of the hazard."""
        if hazard.is_clear:
            return VisualUpdate(text="", visible=False)

        text, color = self._messages[hazard.kind]
        if hazard.kind is HazardKind.OBSTACLE_CLOSE and hazard.label:
            text = LABELLED_OBSTACLE_MESSAGE.format(label=hazard.label)
        return VisualUpdate(text=text, color=color, visible=True)

    def dispatch(
        self,
        hazard: HazardState,
        now: Optional[float] = None,
    ) -> AlertEffects:
        """
        Produce the channel effects for one frame's hazard.

        Args:
            hazard: Classified (and possibly labelled) hazard
            now: Timestamp in seconds; defaults to the dispatcher clock

        Returns:
            AlertEffects with the visual update and any triggered channels
        """
        if now is None:
            now = self._clock()

        visual = self.visual_for(hazard)

        if hazard.kind is not self._last_kind:
            logger.info(f"Hazard: {self._last_kind.value} -> {hazard.kind.value}")
            self._last_kind = hazard.kind

        if hazard.is_clear:
            return AlertEffects(hazard=hazard, visual=visual)

        haptic = False
        if self._haptic.ready(now):
            self._haptic.mark(now)
            haptic = True

        speech = None
        if self._speech.ready(now):
            spoken = sanitize_speech_text(visual.text)
            if spoken:
                self._speech.mark(now)
                speech = spoken

        return AlertEffects(hazard=hazard, visual=visual, haptic=haptic, speech=speech)

    @property
    def haptic_emissions(self) -> int:
        return self._haptic.emissions

    @property
    def speech_emissions(self) -> int:
        return self._speech.emissions

    def reset(self):
        """Forget channel history (e.g. after a pause/resume)."""
        self._haptic.last_emitted = None
        self._speech.last_emitted = None
        self._last_kind = HazardKind.CLEAR
        logger.debug("Alert dispatcher reset")
