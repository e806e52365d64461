"""
Document template engine: JSON templates merged with job data, OVIS checks
(warnings only, never compliance assertions) and PDF rendering.
"""
