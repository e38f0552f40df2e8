#!/usr/bin/env python3
"""
Setup script for the Voice Mail Assistant module.
"""

from setuptools import setup, find_packages

with open("voice_mail_assistant/README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="voice-mail-assistant",
    version="1.0.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="A voice-driven email assistant with streaming sentence-by-sentence speech and barge-in",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/voice-mail-assistant",
    packages=find_packages(include=["voice_mail_assistant", "voice_mail_assistant.*"]),
    package_data={"voice_mail_assistant": ["README.md"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Communications :: Email",
    ],
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "sounddevice",
        "faster-whisper",
        "ollama>=0.5",
        "pydantic>=2.0.0",
        "edge-tts",
        "pydub",
        "audioop-lts; python_version>='3.13'",
        "httpx",
        "nylas>=6.0",
        "fastapi",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-mail-assistant=voice_mail_assistant.core:cli",
            "voice-mail-server=voice_mail_assistant.server:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
