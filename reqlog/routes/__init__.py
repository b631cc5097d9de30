"""Optional FastAPI routers for runtime log administration."""
