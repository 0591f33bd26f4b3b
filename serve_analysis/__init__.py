"""
Tennis Serve Analysis System.

Real-time serve analysis from video: pose, racket and ball tracking with
multi-tier fallbacks, serve phase classification and form metrics.

Modules are imported on-demand to avoid loading heavy dependencies.
"""

__version__ = "0.1.0"
