"""Ward medication scheduling.

This package contains the scheduling rules and domain models, kept free of
storage, UI and notification platforms so they can be tested in isolation.
"""
