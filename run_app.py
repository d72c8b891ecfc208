#!/usr/bin/env python3
"""
Storefront Discounts Runner
===========================

Script to run the discount service in different modes.

Usage:
    python run_app.py                    # Development mode with auto-reload (default)
    python run_app.py --mode prod        # Production mode
    python run_app.py --port 8001        # Custom port
    python run_app.py --host 127.0.0.1   # Custom host
"""

import argparse
import os
import sys

def print_banner():
    """Print application banner"""
    banner = """
╔═══════════════════════════════════════════════════════╗
║               Storefront Discounts API                ║
╚═══════════════════════════════════════════════════════╝
    """
    print(banner)

def check_environment():
    """Report which configuration source will be used"""
    print("\n🔍 Checking environment...")

    if os.path.exists(".env"):
        print("✅ .env file found")
    else:
        print("⚠️  .env file not found, using defaults")

def run_main_app(host="0.0.0.0", port=8000, reload=True, workers=1):
    """Run the FastAPI application"""
    print(f"\n🚀 Starting Storefront Discounts on {host}:{port}")
    print(f"📖 API Docs: http://{host}:{port}/api/docs")
    print("\n" + "="*50)

    import uvicorn
    try:
        uvicorn.run(
            "storefront.main:app",
            host=host,
            port=port,
            reload=reload,
            workers=1 if reload else workers,
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")

def main():
    from storefront.core.config import settings

    parser = argparse.ArgumentParser(
        description="Storefront Discounts Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--mode",
        choices=["dev", "prod"],
        default="dev",
        help="Server mode (default: dev)"
    )
    parser.add_argument(
        "--host",
        default=settings.HOST,
        help=f"Host to bind to (default: {settings.HOST})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help=f"Port to bind to (default: {settings.PORT})"
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload"
    )

    args = parser.parse_args()

    print_banner()
    check_environment()

    reload = not args.no_reload and args.mode != "prod"
    run_main_app(args.host, args.port, reload, settings.WORKERS)

    return 0

if __name__ == "__main__":
    sys.exit(main())
