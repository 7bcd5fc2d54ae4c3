# FastAPI Application Package
