"""
AD Forest Health

Collects Active Directory forest replication health and hands it to report
renderers as an ordered sequence of uniform rows.
"""

__version__ = "0.1.0"
