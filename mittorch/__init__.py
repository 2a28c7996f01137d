"""
mittorch - a lightweight continuous-deployment supervisor.

Tracks one branch of a GitHub repository, keeps a local checkout in sync and
runs a single long-lived process against it, restarting the process when it
crashes and reloading it when the branch advances.
"""

__version__ = "0.1.0"
