"""Audio/Text-to-speech module for Tourguide."""

import subprocess
from typing import Optional, Callable

from .config import CONFIG


class Narrator:
    """Text-to-speech for announcements.

    ``speak`` is fire-and-forget: espeak runs in a child process that is not
    waited on, so the event loop never blocks on speech.
    """

    def __init__(self, enabled: bool = True, rate: int = CONFIG["speech_rate"],
                 callback: Optional[Callable[[str, str], None]] = None):
        self.enabled = enabled
        self.rate = rate
        self.callback = callback

    @staticmethod
    def voice_for(language: str) -> str:
        """espeak voice name for a language code ("fr-FR" -> "fr")"""
        return (language or CONFIG["language"]).split("-")[0].lower()

    def speak(self, text: str, language: str = CONFIG["language"]):
        """Speak text using espeak (available in Termux)"""
        if not self.enabled or not text:
            return
        if self.callback:
            self.callback(text, language)

        try:
            subprocess.Popen(
                ["espeak", "-s", str(self.rate), "-v", self.voice_for(language), text],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            # Fallback: try pyttsx3
            try:
                import pyttsx3
                engine = pyttsx3.init()
                engine.say(text)
                engine.runAndWait()
            except Exception:
                print(f"[AUDIO] {text}")
        except OSError as e:
            print(f"Audio error: {e}")
            print(f"[AUDIO] {text}")
