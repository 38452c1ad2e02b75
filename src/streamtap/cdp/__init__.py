"""Chrome DevTools Protocol client.

PUBLIC API:
  - CDPSession: Page-level CDP client with event callbacks
"""

from streamtap.cdp.session import CDPSession

__all__ = ["CDPSession"]
