#!/usr/bin/env python3
"""
Startup script for the Hub Billing API server
"""

import os
import sys
import asyncio
import socket

# Add current directory to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Set Windows event loop policy for better compatibility
if sys.platform.startswith('win'):
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def check_port_available(port=PORT, host=HOST):
    """Check if a port is available"""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(1)
            return sock.connect_ex((host, port)) != 0  # Port is available if connection fails
    except OSError:
        return False


async def check_store(settings=None):
    """Open and ping the configured document store"""
    from app.core.config import settings as default_settings
    from app.core.database_mongo import close_store, connect_to_store
    from app.core.errors import BillingError

    settings = settings or default_settings
    print(f"✅ Testing {settings.STORE_BACKEND} store connection...")
    store = None
    try:
        store = await connect_to_store(settings)
        await store.ping()
        print("✅ Store connection successful!")
        return True
    except (BillingError, ValueError) as e:
        print(f"❌ Store connection failed: {e}")
        if settings.STORE_BACKEND == "mongo":
            print(f"💡 Make sure MongoDB is running on {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
            print("   or set STORE_BACKEND=memory for a throwaway local store")
        return False
    finally:
        await close_store(store)


def main():
    """Start the server after checking the port and the store"""
    print("🚀 Starting Hub Billing API")
    print("=" * 50)

    if not check_port_available():
        print(f"❌ Port {PORT} is in use. Please stop the process using it or set PORT.")
        return

    if not asyncio.run(check_store()):
        return

    print("✅ Starting Uvicorn server...")
    print(f"📚 API Documentation: http://{HOST}:{PORT}/api/v1/docs")
    print(f"💡 Health Check: http://{HOST}:{PORT}/health")
    print("-" * 50)

    import uvicorn
    try:
        uvicorn.run(
            "app.main:app",
            host=HOST,
            port=PORT,
            log_level="warning",
            reload=False,
            loop="asyncio",
            workers=1,
        )
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")


if __name__ == "__main__":
    main()
