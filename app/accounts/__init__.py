"""
Accounts application - the identity directory.

Resolves user ids to profiles, tracks activity, and provides the
administrative user operations (create admin, delete user, dashboard stats).

Related files:
    - models.py: User model with role field
    - services.py: DirectoryService business logic
    - views.py: Auth, profile, directory and admin endpoints
"""
