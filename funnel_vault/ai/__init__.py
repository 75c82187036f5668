"""
Funnel Vault
AI module: content generation collaborator.

Submodules:
    - generation: generator interface, local stub and the regeneration flow
"""
