#!/usr/bin/env python3
"""
Example usage of the Voice Mail Assistant with custom configuration.

This demonstrates how to recalibrate voice detection for a noisier microphone,
pick another model and voice, and talk to a remote chat endpoint.
"""

import asyncio
from voice_mail_assistant import Config, main


def custom_config() -> Config:
    """Custom configuration example."""
    return Config.from_env(
        # Noisier room: louder speech threshold, longer pause before sending
        silence_threshold=0.035,
        silence_duration_ms=1800,
        # Harder to trigger barge-in from speaker echo
        interrupt_multiplier=4.0,
        # Use a different model and voice
        ollama_model="qwen2.5:7b",
        voice_name="en-GB-SoniaNeural",
        # Run the mail tools in a separate `voice-mail-server` process
        chat_backend="http",
        chat_url="http://127.0.0.1:8000/api/chat",
    )


if __name__ == '__main__':
    try:
        asyncio.run(main(custom_config()))
    except KeyboardInterrupt:
        print("\nGoodbye!")
