"""
Business operations, independent of the HTTP layer
"""
from .orders import OrderLifecycleEngine
from .verification import VerificationWorkflowEngine

__all__ = ['OrderLifecycleEngine', 'VerificationWorkflowEngine']
