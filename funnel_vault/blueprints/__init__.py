"""
Funnel Vault
Blueprint package: content, approval, sync and health routes.
"""
