"""Input validation package."""

from envelope_budget.validation.validator import InputValidator, get_user_friendly_summary

__all__ = ["InputValidator", "get_user_friendly_summary"]
