"""Authentik provisioning module for a WHMCS-style billing host.

To call the host entry points:
    from whmcs_authentik import module
    module.create_account(params)

To use the Authentik client directly:
    from whmcs_authentik.core.authentik import AuthentikClient, UserService

To run the HTTP bridge:
    from whmcs_authentik.flask_app import create_app
"""
# flask_app is not imported here so the module and CLI work without Flask loaded

__version__ = "1.0.0"
