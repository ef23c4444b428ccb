"""
TTS (Text-to-Speech) Services Package.

This package contains the audio half of the relay:

- text_segmenter: segment and whole-turn buffers fed from the chunk queue
- dashscope_client: streaming DashScope synthesis and event decoding
- relay: forwards synthesis results to the audio websocket

Architecture Overview:

    ┌───────────────┐     ┌─────────────┐     ┌──────────────┐     ┌───────────┐
    │pending_chunks │────▶│ TurnBuffers │────▶│  normalize() │────▶│ DashScope │
    └───────────────┘     └─────────────┘     └──────────────┘     └───────────┘
                                                                         │
                                                                         ▼
                                                                  ┌─────────────┐
                                                                  │   Relay     │
                                                                  └─────────────┘
                                                                         │
                                                                         ▼
                                                                  ┌─────────────┐
                                                                  │  Audio WS   │
                                                                  └─────────────┘
"""

from .dashscope_client import DashScopeTTSClient, SynthesisError, SynthesisEvent
from .relay import AudioConnectionError, SynthesisRelay
from .text_segmenter import TurnBuffers

__all__ = [
    "AudioConnectionError",
    "DashScopeTTSClient",
    "SynthesisError",
    "SynthesisEvent",
    "SynthesisRelay",
    "TurnBuffers",
]
