"""FastAPI dependencies shared by the routes."""
