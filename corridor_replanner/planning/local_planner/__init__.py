from corridor_replanner.planning.local_planner.safe_region_rrt import SafeRegionRRTStar, TreeNode

__all__ = ["SafeRegionRRTStar", "TreeNode"]
