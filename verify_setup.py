"""
Setup verification script for the LaTeX compilation service.
Checks dependencies, the TeX engine, and the supporting services.
"""
import asyncio
import os
import sys
from typing import Awaitable, Callable, List, Tuple

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_status(message: str, status: bool):
    """Print colored status message."""
    symbol = f"{GREEN}✓{RESET}" if status else f"{RED}✗{RESET}"
    print(f"{symbol} {message}")


async def check_python_version() -> bool:
    """Check Python version is 3.11+."""
    version = sys.version_info
    if version.major == 3 and version.minor >= 11:
        print_status(f"Python version: {version.major}.{version.minor}.{version.micro}", True)
        return True
    else:
        print_status(f"Python version {version.major}.{version.minor} (requires 3.11+)", False)
        return False


async def check_dependencies() -> bool:
    """Check if required packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "httpx",
        "aiofiles",
    ]

    all_installed = True
    for package in required_packages:
        try:
            __import__(package)
            print_status(f"Package '{package}' installed", True)
        except ImportError:
            print_status(f"Package '{package}' missing", False)
            all_installed = False

    return all_installed


async def check_env_file() -> bool:
    """Check if .env file exists (optional, defaults apply)."""
    if os.path.exists(".env"):
        print_status(".env file exists", True)
    else:
        print_status(".env file missing (defaults will be used)", True)
    return True


async def check_engine() -> bool:
    """Check the configured TeX engine answers --version."""
    from app.services.latex_compiler import latex_compiler

    engine_status = await latex_compiler.check_available()
    if engine_status.available:
        print_status(f"{engine_status.engine}: {engine_status.version}", True)
        return True

    print_status(f"{engine_status.engine} not available: {engine_status.error}", False)
    print(f"  {YELLOW}Install TeX Live (https://www.tug.org/texlive/) or MiKTeX (https://miktex.org/){RESET}")
    return False


async def check_temp_dir() -> bool:
    """Check the compilation temp directory is writable."""
    from app.services.workspace import workspace

    root = await workspace.ensure_root()
    writable = os.access(root, os.W_OK)
    print_status(f"Temp directory {root.resolve()}: {'writable' if writable else 'not writable'}", writable)
    return writable


async def check_postgres() -> bool:
    """Check if PostgreSQL is reachable for the document store."""
    from sqlalchemy import text

    from app.database import engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        print_status("PostgreSQL connection successful", True)
        return True
    except Exception as e:
        print_status(f"PostgreSQL connection failed: {str(e)}", False)
        print(f"  {YELLOW}Only /documents needs the database; compilation works without it{RESET}")
        return False
    finally:
        await engine.dispose()


async def check_service() -> bool:
    """Check a running service answers /health."""
    from app.services.compilation_client import LatexCompilationClient

    client = LatexCompilationClient(timeout=5.0)
    body = await client.health()
    if body.get("status") == "unreachable":
        print_status(f"Service at {client.base_url} not reachable: {body.get('error')}", False)
        print(f"  {YELLOW}Start it with: uvicorn app.main:app --port 3002{RESET}")
        return False

    healthy = body.get("status") == "healthy"
    print_status(f"Service at {client.base_url}: {body.get('status')}", healthy)
    return healthy


async def main():
    """Run all verification checks."""
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}LaTeX Compilation Service - Setup Verification{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

    checks: List[Tuple[str, Callable[[], Awaitable[bool]]]] = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Environment File", check_env_file),
        ("TeX Engine", check_engine),
        ("Temp Directory", check_temp_dir),
        ("PostgreSQL", check_postgres),
        ("Running Service", check_service),
    ]

    results = []

    for check_name, check_func in checks:
        print(f"\n{BLUE}Checking {check_name}...{RESET}")
        try:
            result = await check_func()
            results.append(result)
        except Exception as e:
            print_status(f"Error during check: {str(e)}", False)
            results.append(False)

    # Summary
    print(f"\n{BLUE}{'='*60}{RESET}")
    passed = sum(results)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed! ({passed}/{total}){RESET}")
    else:
        print(f"{RED}✗ Some checks failed ({passed}/{total} passed){RESET}")
        print(f"\n{YELLOW}Please fix the issues above before relying on the service.{RESET}")
        sys.exit(1)

    print(f"{BLUE}{'='*60}{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
