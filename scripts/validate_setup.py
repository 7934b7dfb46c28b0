#!/usr/bin/env python
"""Check that Navi can run here.

Verifies the interpreter, installed packages, configuration, the Ollama
service and the configured models. Exits non-zero if any check fails.

Usage:
    python scripts/validate_setup.py
"""
import asyncio
import importlib
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

sys.path.insert(0, str(Path(__file__).parent.parent))

GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

REQUIRED_PACKAGES = [
    ("quart", "web framework"),
    ("hypercorn", "ASGI server"),
    ("httpx", "Ollama HTTP client"),
    ("aiosqlite", "vector store driver"),
    ("numpy", "similarity scoring"),
    ("pydantic", "request validation"),
    ("structlog", "logging"),
    ("pypdf", "PDF extraction"),
    ("docx", "Word extraction (python-docx)"),
]

OPTIONAL_PACKAGES = [
    ("pytest", "test runner"),
    ("pytest_asyncio", "async test support"),
]


@dataclass
class Report:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def ok(self, msg: str) -> None:
        print(f"  {GREEN}✓{RESET} {msg}")

    def info(self, msg: str) -> None:
        print(f"  {BLUE}ℹ{RESET} {msg}")

    def fail(self, msg: str, hint: str = None) -> None:
        print(f"  {RED}✗{RESET} {msg}")
        if hint:
            self.info(hint)
        self.errors.append(msg)

    def warn(self, msg: str) -> None:
        print(f"  {YELLOW}⚠{RESET} {msg}")
        self.warnings.append(msg)


def heading(title: str) -> None:
    print(f"\n{BLUE}── {title} {'─' * (56 - len(title))}{RESET}")


def check_python(report: Report) -> None:
    heading("Python")
    version = ".".join(str(part) for part in sys.version_info[:3])
    if sys.version_info >= (3, 10):
        report.ok(f"Python {version}")
    else:
        report.fail(f"Python {version} is too old", "Navi needs Python 3.10 or newer")

    if sys.prefix == getattr(sys, "base_prefix", sys.prefix):
        report.warn("Not running inside a virtual environment")


def check_packages(report: Report) -> bool:
    """Return False if a required package is missing."""
    heading("Packages")
    complete = True
    for module, purpose in REQUIRED_PACKAGES:
        try:
            importlib.import_module(module)
            report.ok(f"{module:<16} {purpose}")
        except ImportError as e:
            report.fail(f"{module} missing ({e})", "Run: pip install -e .")
            complete = False

    for module, purpose in OPTIONAL_PACKAGES:
        try:
            importlib.import_module(module)
            report.ok(f"{module:<16} {purpose}")
        except ImportError:
            report.warn(f"{module} not installed ({purpose}); run: pip install -e .[test]")
    return complete


def check_config(report: Report):
    heading("Configuration")
    try:
        from navi import config
    except Exception as e:
        report.fail(f"Could not load navi.config: {e}")
        return None

    report.ok("navi.config loaded")
    report.info(f"Ollama:          {config.OLLAMA_BASE_URL}")
    report.info(f"Chat model:      {config.CHAT_MODEL}")
    report.info(f"Embedding model: {config.EMBEDDING_MODEL}")
    report.info(f"Chunk size:      {config.CHUNK_SIZE} chars, top {config.RETRIEVAL_TOP_K}")
    report.info(f"Database:        {config.DB_PATH}")
    report.info(f"Uploads:         {config.UPLOADS_DIR}")

    if config.CHUNK_SIZE <= 0:
        report.fail(f"CHUNK_SIZE must be positive, got {config.CHUNK_SIZE}")
    if not config.DB_PATH.exists():
        report.warn("Database not created yet; it is created when the server starts")
    return config


async def check_ollama(report: Report, config) -> None:
    from navi.errors import EmbeddingError
    from navi.llm_client import OllamaClient

    heading("Ollama")
    client = OllamaClient()

    try:
        installed = await client.list_models()
    except Exception as e:
        report.fail(f"Ollama unreachable at {config.OLLAMA_BASE_URL}: {e}", "Start it with: ollama serve")
        return
    report.ok(f"Ollama reachable ({len(installed)} models installed)")

    missing = []
    for model in sorted({config.CHAT_MODEL, config.EMBEDDING_MODEL}):
        if model in installed or f"{model}:latest" in installed:
            report.ok(f"Model {model} installed")
        else:
            missing.append(model)
            report.fail(f"Model {model} not installed", f"Run: ollama pull {model}")

    if config.EMBEDDING_MODEL in missing:
        return

    try:
        vector = await client.embed("setup check")
    except EmbeddingError as e:
        report.fail(f"Embedding request failed: {e}")
        return
    report.ok(f"Embedding request works (dimension {len(vector)})")


async def main() -> Report:
    print(f"{BLUE}Navi setup check{RESET}")
    report = Report()

    check_python(report)
    packages_ok = check_packages(report)
    config = check_config(report)
    if config is not None and packages_ok:
        await check_ollama(report, config)

    heading("Result")
    if report.errors:
        print(f"  {RED}{len(report.errors)} problem(s) found:{RESET}")
        for problem in report.errors:
            print(f"    - {problem}")
    else:
        report.ok("Ready. Start the server with: hypercorn 'navi.main:create_app()'")
    if report.warnings:
        print(f"  {YELLOW}{len(report.warnings)} warning(s){RESET}")
    print()
    return report


if __name__ == "__main__":
    result = asyncio.run(main())
    sys.exit(1 if result.errors else 0)
