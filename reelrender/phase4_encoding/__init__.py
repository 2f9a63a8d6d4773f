from reelrender.phase4_encoding.encoder import StreamingEncoder

__all__ = ["StreamingEncoder"]
