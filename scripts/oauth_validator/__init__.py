"""
OAuth Flow Validator
====================

Drives the interactive OAuth authorization-code flow of an OpenShift-style
API server end to end and asserts on the exact sequence of protocol steps
it observes (challenges, redirects, form submissions, code or error).
"""

__version__ = "1.0.0"
