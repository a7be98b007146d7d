"""Authorization / policy layer.

Role-based policies are evaluated per (page, action). A request route maps to
one pair; the policy decides whether the caller's account holds a role that
grants it, either directly or through a group requirement.
"""
