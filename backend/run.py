#!/usr/bin/env python3
"""
Live Proctoring Coordinator - Easy Startup Script
Run this file to start the server with proper configuration
"""

import os
import sys
from pathlib import Path


def check_environment():
    """Check if environment is properly set up"""
    print("🔍 Checking environment setup...")

    env_file = Path(".env")
    if not env_file.exists():
        print("⚠️  WARNING: .env file not found, using defaults")

    from dotenv import load_dotenv
    load_dotenv()

    # Violations cannot be stored without Supabase; live monitoring still works
    missing = [var for var in ("SUPABASE_URL", "SUPABASE_KEY") if not os.getenv(var)]
    if missing:
        print("⚠️  WARNING: Missing Supabase configuration, violation writes will fail:")
        for var in missing:
            print(f"   - {var}")

    try:
        from app.config import get_settings
        get_settings().monitoring_config()
    except ValueError as e:
        print(f"❌ ERROR: Invalid proctoring configuration: {e}")
        return False

    print("✅ Environment check passed!")
    return True


def check_dependencies():
    """Check if all dependencies are installed"""
    print("\n🔍 Checking dependencies...")

    try:
        import fastapi
        import uvicorn
        import supabase
        import pydantic_settings
        print("✅ All core dependencies installed!")
        return True
    except ImportError as e:
        print(f"❌ ERROR: Missing dependency: {e}")
        print("\n📦 Install dependencies with:")
        print("   pip install -e .")
        return False


def print_banner():
    """Print startup banner"""
    banner = """
╔═══════════════════════════════════════════════════╗
║                                                   ║
║          Live Proctoring Coordinator              ║
║        Sample-Based Exam Session Monitoring       ║
║                                                   ║
║                   Version 1.0.0                   ║
║                                                   ║
╚═══════════════════════════════════════════════════╝
    """
    print(banner)


def print_startup_info():
    """Print startup information"""
    print("\n🚀 Starting server...")
    print("\n📚 Once started, you can access:")
    print("   • API Docs (Swagger):  http://localhost:8000/docs")
    print("   • Health Check:        http://localhost:8000/health")
    print("   • Student socket:      ws://localhost:8000/api/v1/proctoring/ws/student")
    print("   • Monitoring socket:   ws://localhost:8000/api/v1/proctoring/ws/monitor")
    print("\n💡 Press CTRL+C to stop the server")
    print("\n" + "="*55 + "\n")


def main():
    """Main startup function"""
    print_banner()

    if not check_dependencies():
        sys.exit(1)

    if not check_environment():
        sys.exit(1)

    print_startup_info()

    try:
        import uvicorn
        from app.config import settings

        uvicorn.run(
            "app.main:app",
            host=settings.host,
            port=settings.port,
            reload=settings.debug,
            log_level=settings.LOG_LEVEL.lower()
        )
    except KeyboardInterrupt:
        print("\n\n👋 Server stopped by user")
    except Exception as e:
        print(f"\n❌ ERROR: Failed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
