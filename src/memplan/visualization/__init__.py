"""Plots of computed memory plans."""

from .memory_plan import plot_memory_plan

__all__ = ['plot_memory_plan']
