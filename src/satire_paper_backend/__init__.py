"""
Satire Paper Backend - REST API for generating joke academic papers

This package provides a FastAPI-based web service that turns a topic into a
satirical LaTeX paper, compiles it to PDF and publishes it. It enables:

- Asynchronous job submission and status polling
- Prompt expansion and LaTeX generation with a pluggable LLM provider
- PDF compilation with pdflatex, including a single fixup-and-retry
- Uploading finished papers to S3 or a hosted blob store
- Expiry of abandoned jobs

Key Components:
    - main: FastAPI application factory and HTTP endpoint definitions
    - job_manager: Job submission and the background pipeline
    - job_store: In-memory job registry
    - generator: Text generation providers
    - compiler: pdflatex subprocess wrapper
    - storage: Storage backends
    - configuration: Config loading and credential validation
    - models: Pydantic models for request/response validation

Usage:
    Run the API server with:
        uvicorn satire_paper_backend.main:create_app --factory --host 0.0.0.0 --port 3000

    Or use the console script:
        satire-paper-api

Architecture Principles:
    - Jobs live only in memory and are dropped on restart
    - Requests never wait for the pipeline; clients poll for status
    - Every adapter sits behind a narrow interface chosen by configuration
"""

__version__ = "0.1.0"
