from reelrender.phase2_timeline.planner import Timeline, plan_timeline

__all__ = ["Timeline", "plan_timeline"]
