"""Core Business Logic Module

Pure Python account lifecycle logic, independent of the host framework and
of Flask.

Module Structure:
    - authentik/              : Low-level Authentik API client
    - provisioning_service.py : Account synchronizer (activate/suspend/unsuspend/terminate)
    - usernames.py            : Username generation and unique allocation
    - passwords.py            : Initial credential generation

Import explicitly when needed:
    from whmcs_authentik.core.provisioning_service import AccountSynchronizer
    from whmcs_authentik.core.usernames import allocate_unique_username
"""
