from .assignment_enricher import AssignmentEnricher

__all__ = ['AssignmentEnricher']
