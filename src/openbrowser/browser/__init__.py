"""Browser automation modules (Playwright).

``pool`` owns one browser context per profile; ``page_ops``, ``crawl`` and
``actions`` run operations against those contexts.

Anti-detection is handled by ``stealth`` (identity defaults, proxy rotation,
init-script patches) and ``captcha`` (detection and the solve handshake).
"""
