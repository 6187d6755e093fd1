"""
Core app: users, roles, permissions, security middleware and health checks.
"""
