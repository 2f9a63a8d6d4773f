"""
Run orchestration: the frame scheduler and the render_composition entry point.
"""
