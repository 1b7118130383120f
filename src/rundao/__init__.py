"""RUN DAO backend API."""
