"""
RBAC (Role-Based Access Control) application.

Provides the project access engine:
- Configurable organisation and project role catalog
- Dual-membership resolution (organisation + project)
- Declarative rules with ownership, status and platform-role clauses
- Short-lived decision cache with per-key invalidation
- Append-only audit logging
"""
