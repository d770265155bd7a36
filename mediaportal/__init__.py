"""
mediaportal background orchestration core.

Job scheduler, notification dispatcher and rate limiting shared by the
media-request portal.
"""
__version__ = "1.0.0"
