from .statistics import Statistics

__all__ = ["Statistics"]
