"""Authentication endpoints: signup, login, token refresh, logout, /me."""
