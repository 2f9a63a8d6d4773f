from reelrender.phase3_compositing.compositor import CoverFit, FrameCompositor, cover_fit

__all__ = ["CoverFit", "FrameCompositor", "cover_fit"]
