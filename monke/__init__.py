"""Voice conversation loop: speech capture, AI reply, speech synthesis."""

__version__ = "0.1.0"
