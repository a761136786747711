# decoder/__init__.py
"""
Decoder module: RNN decoder states and the Sutskever-style decoder.
"""

from .sutskever_decoder import DecoderState, SutskeverDecoder

__all__ = [
    "DecoderState",
    "SutskeverDecoder",
]
