# models/__init__.py
from .user import User
from .assignment_request import AssignmentRequest
from .assignment import Assignment
from .rating import Rating
from .portfolio import Portfolio

__all__ = ["User", "AssignmentRequest", "Assignment", "Rating", "Portfolio"]
