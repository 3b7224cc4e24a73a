"""
Vault service application package.
"""
