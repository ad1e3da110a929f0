"""Static seed data shared by the API and the init script."""
