"""Host adapter: options, event hub, translators, ASGI middleware and registration."""
