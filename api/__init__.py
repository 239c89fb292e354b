"""api/ -- FastAPI HTTP layer for StaffDesk. Imports from auth/ and core/, never the reverse."""
