# Presentation Layer - FastAPI application
