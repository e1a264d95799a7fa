"""
Core modules for Knowledge Gate.

This package contains budget authorization, single-call execution, history
compression, fallback sequencing, fan-out dispatch and conflict detection.
"""
