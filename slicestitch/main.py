import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file
print("\n" + "="*60)
print("🔧 LOADING ENVIRONMENT CONFIGURATION")
print("="*60)

env_path = Path(__file__).parent.parent / ".env"
print(f"Looking for .env file at: {env_path}")

if env_path.exists():
    print(f"✓ .env file found")
    try:
        load_dotenv(dotenv_path=env_path, override=True)
        print(f"✓ .env file loaded successfully")
    except (OSError, UnicodeDecodeError) as e:
        print(f"✗ Error loading .env: {e}")
else:
    print(f"⚠ .env file not found at: {env_path}")
    print(f"  Using defaults (storage: storage/exports, remote timeout: 15s)")

print(f"Storage directory: {os.environ.get('SLICESTITCH_STORAGE_DIR', 'storage/exports')}")
print("="*60 + "\n")

# Imported after .env is loaded: service modules read their settings at import.
from slicestitch.api.v1.routes import router as api_v1_router  # noqa: E402

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app() -> FastAPI:
    """
    Application factory for the Slice & Stitch API.

    Keeping this as a separate function makes it easier to extend
    configuration and testing later.
    """
    app = FastAPI(
        title="Slice & Stitch API",
        version="0.1.0",
        description="Nine-grid slicing and vertical stitching of photos.",
    )

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    # Public, versioned API routes.
    app.include_router(api_v1_router)

    return app


app = create_app()
