"""
MasterBackup API

Multi-tenant account service: tenant registration with per-tenant
databases, JWT and API key authentication, emailed 2FA codes, password
recovery and team invitations.
"""

__version__ = "1.0.0"
