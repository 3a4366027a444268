#!/usr/bin/env python3
"""
Celestis AI Avatar - Main Application Entry Point
A desktop AI chat companion with a VRM/GLTF avatar and voice input.

Features:
- Chat with any OpenRouter model
- 3D VRM/GLTF avatar rendering with a 2D image fallback
- Push-to-talk speech recognition
- Persistent user settings and template presets

Version: 1.0.0
Python: 3.11+
"""

import sys
import asyncio
import logging
from pathlib import Path

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from celestis.core.config import load_config
from celestis.utils.logger import setup_logging

def check_python_version():
    """Ensure compatible Python version."""
    if sys.version_info < (3, 11):
        print("❌ Python 3.11 or higher is required!")
        print(f"Current version: {sys.version}")
        sys.exit(1)
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")

def check_dependencies():
    """Check if all required dependencies are installed."""
    required_packages = [
        'numpy', 'pyrr', 'moderngl', 'tkinter', 'PIL',
        'speech_recognition', 'openai', 'pygltflib', 'pydantic', 'yaml'
    ]

    missing_packages = []

    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing_packages.append(package)

    if missing_packages:
        print("❌ Missing required packages:")
        for pkg in missing_packages:
            print(f"   - {pkg}")
        print("\nPlease install missing packages with:")
        print("pip install -e .")
        sys.exit(1)

    print("✅ All required dependencies are installed")

def main():
    """Main application entry point."""
    print("🌟 Celestis AI Avatar - Starting Application...")
    print("=" * 50)

    # Check system requirements
    check_python_version()
    check_dependencies()

    config = load_config()

    # Setup logging
    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting {config.app_name} {config.version}")

    # Imported late so the dependency check can report a missing tkinter first
    from celestis.core.application import CelestisApplication

    try:
        app = CelestisApplication(config)
        asyncio.run(app.run())

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        print("\n👋 Goodbye!")
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        print(f"❌ Application error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
