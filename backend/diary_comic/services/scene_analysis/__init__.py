"""故事分析模块"""

from .service import SceneDescription, StoryAnalysis, StoryAnalyzer

__all__ = ["SceneDescription", "StoryAnalysis", "StoryAnalyzer"]
