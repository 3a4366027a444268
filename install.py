#!/usr/bin/env python3
"""
Celestis AI Avatar Installation Script
Automated setup for directories and configuration.
"""

import sys
import shutil
from pathlib import Path

def check_python_version():
    """Check if Python version is compatible."""
    if sys.version_info < (3, 11):
        print("❌ Python 3.11 or higher is required!")
        print(f"Current version: {sys.version}")
        return False
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
    return True

def setup_directories():
    """Create necessary directories."""
    print("📁 Setting up directories...")

    directories = [
        "assets/avatars",
        "configs",
        "logs",
    ]

    for directory in directories:
        Path(directory).mkdir(parents=True, exist_ok=True)

    print("✅ Directories created")

def create_env_file():
    """Create .env file from template if it doesn't exist."""
    if not Path('.env').exists():
        if Path('.env.template').exists():
            print("📝 Creating .env file from template...")
            shutil.copy('.env.template', '.env')
            print("✅ .env file created - please add your OpenRouter API key")
        else:
            print("⚠️  No .env template found - you'll need to create .env manually")
    else:
        print("✅ .env file already exists")

def check_optional_dependencies():
    """Check for optional dependencies and suggest installation."""
    print("🔍 Checking optional dependencies...")

    optional_deps = {
        'pyaudio': ('PyAudio', 'Microphone capture for voice input'),
    }

    missing = []
    for module, (dist, description) in optional_deps.items():
        try:
            __import__(module)
        except ImportError:
            missing.append((dist, description))

    if missing:
        print("⚠️  Optional dependencies not found:")
        for dist, desc in missing:
            print(f"   - {dist}: {desc}")
        print("   Install with: pip install -e .[voice]")
    else:
        print("✅ All optional dependencies found")

def main():
    """Main installation process."""
    print("🚀 Celestis AI Avatar Installation")
    print("=" * 40)

    if not check_python_version():
        sys.exit(1)

    setup_directories()
    create_env_file()
    check_optional_dependencies()

    print("\n🎉 Installation complete!")
    print("\n📋 Next steps:")
    print("   1. Add your OpenRouter API key to .env (or in Settings)")
    print("   2. Place VRM/GLB models or PNG avatars in assets/avatars/")
    print("   3. Run: python main.py")

if __name__ == "__main__":
    main()
