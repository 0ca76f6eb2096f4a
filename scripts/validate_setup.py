#!/usr/bin/env python
"""Validate the docchat setup: dependencies, configuration and the Ollama backend."""
import sys
import asyncio

import httpx

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")


def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")


def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")


def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")


def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")


DEPENDENCIES = [
    ("httpx", "HTTP client"),
    ("faiss", "FAISS vector index"),
    ("numpy", "Numerical arrays"),
    ("pdfplumber", "PDF text extraction"),
    ("yaml", "YAML frontmatter"),
    ("dotenv", "Environment files"),
    ("structlog", "Structured logging"),
]


async def main():
    print_section("docchat - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 10):
        print_success("Python version >= 3.10")
    else:
        print_error("Python version < 3.10 (required)")
        errors.append("Python version too old")

    in_venv = sys.base_prefix != sys.prefix
    if in_venv:
        print_success("Running in virtual environment")
    else:
        print_warning("Not running in virtual environment (recommended)")
        warnings.append("Not in venv")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    for module_name, description in DEPENDENCIES:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Configuration
    print_section("3. Configuration")

    from docchat.config import Settings
    from docchat.errors import EmbeddingBackendError, InvalidConfiguration
    from docchat.llm_client import OllamaClient
    from docchat.rag.embedder import Embedder

    try:
        settings = Settings.from_env().validate()
    except InvalidConfiguration as e:
        print_error(f"Invalid configuration: {e}")
        errors.append("Config invalid")
        return errors, warnings

    print_success("Config loaded successfully")
    print_info(f"  Chat model: {settings.chat_model}")
    print_info(f"  Embedding model: {settings.embedding_model}")
    print_info(f"  Ollama URL: {settings.ollama_base_url}")
    print_info(f"  Chunk size: {settings.chunk_size} chars (overlap {settings.chunk_overlap})")
    print_info(f"  Database: {settings.db_path}")

    if settings.docs_dir.exists():
        print_success(f"Documents directory exists: {settings.docs_dir}")
    else:
        print_warning(f"Documents directory missing: {settings.docs_dir}")
        warnings.append("Documents directory missing")

    # 4. Ollama service and models
    print_section("4. Ollama Service")

    client = OllamaClient(settings.ollama_base_url, timeout=settings.request_timeout)

    try:
        models = set(await client.list_models())
        print_success(f"Ollama service running at {settings.ollama_base_url}")
        print_info(f"Found {len(models)} models installed")

        for label, model in (("Chat", settings.chat_model), ("Embedding", settings.embedding_model)):
            if model in models:
                print_success(f"{label} model available: {model}")
            else:
                print_error(f"{label} model missing: {model}")
                print_info(f"  Run: ollama pull {model}")
                errors.append(f"Missing {label.lower()} model: {model}")

    except httpx.ConnectError:
        print_error("Cannot connect to Ollama service")
        print_info("  Make sure Ollama is running: ollama serve")
        errors.append("Ollama not running")
        return errors, warnings
    except httpx.HTTPError as e:
        print_error(f"Ollama check failed: {e}")
        errors.append(f"Ollama error: {e}")

    # 5. Embedding round trip
    print_section("5. Embedding API Test")

    try:
        vectors = await Embedder(client, settings.embedding_model).embed(["test"])
        dimension = len(vectors[0])
        print_success(f"Embedding API working (dimension: {dimension})")

        if settings.embedding_dimension and settings.embedding_dimension != dimension:
            print_error(
                f"EMBEDDING_DIMENSION={settings.embedding_dimension} but model returns {dimension}"
            )
            errors.append("Embedding dimension mismatch")
    except EmbeddingBackendError as e:
        print_error(f"Embedding API test failed: {e}")
        errors.append(f"Embedding test failed: {e}")

    # 6. Summary
    print_section("Summary")

    if not errors:
        print_success("All checks passed!")
        print_info("  Next step: python scripts/reindex.py, then run docchat")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings


if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
