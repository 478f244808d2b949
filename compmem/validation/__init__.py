from .comparison import FieldError, ensure_valid, validate, validate_group

__all__ = ["FieldError", "ensure_valid", "validate", "validate_group"]
