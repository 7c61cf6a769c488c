"""
Orquestador de emisión idempotente de facturas electrónicas SRI
"""
from .models import CanonicalResult, Submission, parse_request
from .idempotency import IdempotencyCache
from .environment import EnvironmentResolver
from .workflow import SubmissionWorkflow, build_workflow

__all__ = [
    'CanonicalResult',
    'Submission',
    'parse_request',
    'IdempotencyCache',
    'EnvironmentResolver',
    'SubmissionWorkflow',
    'build_workflow',
]
