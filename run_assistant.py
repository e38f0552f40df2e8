#!/usr/bin/env python3
"""
Runner script for the Voice Mail Assistant.

This script provides a simple way to run the assistant with settings taken from
the environment (NYLAS_API_KEY, NYLAS_GRANT_ID, OLLAMA_HOST, ...).

Usage:
    python run_assistant.py
"""

import asyncio
from voice_mail_assistant import main


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
