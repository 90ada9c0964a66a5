"""
Diagnostic script to check .env loading and the imaging stack.
Run this to troubleshoot configuration or missing native libraries.
"""

import importlib
import logging
import os
import sys
from pathlib import Path

print("\n" + "="*70)
print("🔍 ENVIRONMENT DIAGNOSTICS")
print("="*70 + "\n")

issues = []

# 1. Check Python version
print(f"1. Python Version: {sys.version}")
if sys.version_info < (3, 10):
    issues.append("❌ Python 3.10 or newer is required")
print()

# 2. Check .env file
env_path = Path(__file__).parent / ".env"
print(f"2. .env File Location: {env_path}")
print(f"   Exists: {env_path.exists()}")

if env_path.exists():
    print(f"   Size: {env_path.stat().st_size} bytes")
    print("\n   Content preview:")
    with open(env_path, 'r') as f:
        for i, line in enumerate(f.readlines()[:10], 1):
            line = line.rstrip()
            if line and not line.startswith('#'):
                print(f"   Line {i}: {line}")
    try:
        from dotenv import load_dotenv
        result = load_dotenv(dotenv_path=env_path, override=True)
        print(f"\n   Loaded: {result}")
    except ImportError:
        issues.append("❌ python-dotenv not installed")
print()

# 3. Check settings
print("3. Settings:")
storage_dir = Path(os.environ.get("SLICESTITCH_STORAGE_DIR", "storage/exports"))
print(f"   SLICESTITCH_STORAGE_DIR: {storage_dir}")
try:
    storage_dir.mkdir(parents=True, exist_ok=True)
    marker = storage_dir / ".write-check"
    marker.write_bytes(b"")
    marker.unlink()
    print("   ✓ Storage directory is writable")
except OSError as e:
    print(f"   ✗ Storage directory is not writable: {e}")
    issues.append("❌ Export storage directory is not writable")

for name, default, parse in (
    ("SLICESTITCH_REMOTE_TIMEOUT", "15", float),
    ("SLICESTITCH_REMOTE_MAX_BYTES", str(50 * 1024 * 1024), int),
    ("SLICESTITCH_INLINE_ENCODE_LIMIT", str(4096 * 4096), int),
):
    raw = os.environ.get(name, default)
    try:
        parse(raw)
        print(f"   ✓ {name}: {raw}")
    except ValueError:
        print(f"   ✗ {name}: {raw!r} is not a valid {parse.__name__}")
        issues.append(f"❌ {name} must be a {parse.__name__}")

level = os.environ.get("LOG_LEVEL", "INFO").upper()
if isinstance(logging.getLevelName(level), int):
    print(f"   ✓ LOG_LEVEL: {level}")
else:
    print(f"   ✗ LOG_LEVEL: {level} is not a logging level")
    issues.append("❌ LOG_LEVEL is invalid")
print()

# 4. Check imaging and web packages
print("4. Packages:")
packages = [
    ("PIL", "Pillow"),
    ("numpy", "numpy"),
    ("cv2", "opencv-python-headless"),
    ("psd_tools", "psd-tools"),
    ("requests", "requests"),
    ("fastapi", "fastapi"),
    ("multipart", "python-multipart"),
]
for module_name, dist_name in packages:
    try:
        module = importlib.import_module(module_name)
        version = getattr(module, "__version__", "unknown")
        print(f"   ✓ {dist_name} (version: {version})")
    except ImportError as e:
        print(f"   ✗ {dist_name} NOT installed ({e})")
        issues.append(f"❌ {dist_name} not installed")
print()

# 5. Render smoke test
print("5. Render Smoke Test:")
if not issues:
    from slicestitch.services.canvas import Canvas

    canvas = Canvas(8, 8)
    canvas.fill_rect(0, 0, 8, 8, "#336699")
    data = canvas.encode_png()
    print(f"   ✓ Encoded an 8x8 PNG ({len(data)} bytes)")
else:
    print("   ⚠ Skipped (fix the issues above first)")
print()

# 6. Summary
print("="*70)
print("📋 SUMMARY")
print("="*70)

if not issues:
    print("✅ All checks passed! Configuration looks good.")
    print("\nYou can now start the server:")
    print("  uvicorn slicestitch.main:app --reload")
else:
    print("Issues found:\n")
    for issue in issues:
        print(f"  {issue}")
    print("\nRecommended action:")
    print("  pip install -e .[test]")

print("="*70 + "\n")
