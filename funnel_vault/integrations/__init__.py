"""funnel_vault.integrations — External service gateway modules.

All outbound HTTP calls to the content platform must go through a gateway
in this package, never via bare `requests` calls in services or blueprints.

Every call is:
  - Authenticated (token injected by the gateway)
  - Retried with backoff
  - Circuit-broken per location

Current gateways:
  platform_gateway.PlatformGateway — key/value directory of a platform location
"""
