"""
Batch job orchestration across Globus grid workers through a single SSH entrypoint.
"""

__version__ = "0.1.0"
