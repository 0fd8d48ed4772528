"""
Alert Sinks - Platform Adapters.

A sink performs the effects the dispatcher describes. Platforms
subclass AlertSink and override the three channel callbacks:

    class PhoneSink(AlertSink):
        def on_visual_update(self, text, color, visible): ...
        def on_haptic(self): ...
        def on_speech(self, text): ...

Included:
- LoggingAlertSink: writes every effect to the log
- SpeechAlertSink: LoggingAlertSink + pyttsx3 speech with flush semantics
"""

from __future__ import annotations

import threading
from abc import ABC
from queue import Queue, Empty, Full
from typing import Optional
from loguru import logger

from pathguard.core.contracts import AlertEffects


class AlertSink(ABC):
    """Receives channel effects. Every callback is optional."""

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def on_visual_update(self, text: str, color: str, visible: bool) -> None:
        pass

    def on_haptic(self) -> None:
        pass

    def on_speech(self, text: str) -> None:
        pass

    def apply(self, effects: AlertEffects) -> None:
        """Fan one dispatch out to the channel callbacks."""
        visual = effects.visual
        self.on_visual_update(visual.text, visual.color, visual.visible)
        if effects.haptic:
            self.on_haptic()
        if effects.speech:
            self.on_speech(effects.speech)


class LoggingAlertSink(AlertSink):
    """Logs banner changes, haptic pulses and utterances."""

    def __init__(self, haptic_pulse_ms: int = 200):
        self.haptic_pulse_ms = haptic_pulse_ms
        self._banner: Optional[str] = None

    def on_visual_update(self, text: str, color: str, visible: bool) -> None:
        banner = text if visible else None
        if banner == self._banner:
            return
        self._banner = banner
        if visible:
            logger.info(f"Banner [{color}]: {text}")
        else:
            logger.info("Banner cleared")

    def on_haptic(self) -> None:
        logger.info(f"Haptic pulse ({self.haptic_pulse_ms}ms)")

    def on_speech(self, text: str) -> None:
        logger.info(f"Speak: \"{text}\"")


class SpeechAlertSink(LoggingAlertSink):
    """
    Speaks alerts with pyttsx3.

    Flush-queue semantics: a new utterance replaces any queued one and
    interrupts the one being spoken, rather than queueing behind it.
    The engine lives on a worker thread so speaking never blocks the
    frame loop.
    """

    def __init__(
        self,
        rate: int = 160,
        volume: float = 1.0,
        haptic_pulse_ms: int = 200,
    ):
        super().__init__(haptic_pulse_ms=haptic_pulse_ms)
        self.rate = rate
        self.volume = volume

        self._queue: Queue = Queue(maxsize=1)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._engine = None
        self._interrupt = threading.Event()

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._worker, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        self._interrupt.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        self._thread = None

    def on_speech(self, text: str) -> None:
        super().on_speech(text)
        if not self._running:
            return

        # Drop any utterance still waiting, then interrupt the current one
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except Empty:
                break
        try:
            self._queue.put_nowait(text)
        except Full:
            logger.debug("Speech queue busy, utterance dropped")
            return
        self._interrupt.set()

    def _on_word(self, name, location, length):
        # Runs inside runAndWait; stop() here is how pyttsx3 cancels an utterance
        if self._interrupt.is_set() and self._engine is not None:
            self._engine.stop()

    def _init_engine(self) -> bool:
        try:
            import pyttsx3

            self._engine = pyttsx3.init()
            self._engine.setProperty("rate", int(self.rate))
            self._engine.setProperty("volume", float(self.volume))
            self._engine.connect("started-word", self._on_word)
            logger.info("Speech engine initialized")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize speech engine: {e}")
            self._engine = None
            return False

    def _worker(self):
        if not self._init_engine():
            self._running = False
            return

        while self._running:
            try:
                text = self._queue.get(timeout=0.1)
            except Empty:
                continue

            self._interrupt.clear()
            try:
                self._engine.say(text)
                self._engine.runAndWait()
            except Exception as e:
                logger.error(f"Speech synthesis failed: {e}")

        try:
            self._engine.stop()
        except Exception as e:
            logger.debug(f"Speech engine stop failed: {e}")
        self._engine = None
