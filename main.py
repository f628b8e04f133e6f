#!/usr/bin/env python3
"""
IDPatch - Machine identifier patcher for desktop application bundles
Main application entry point
"""

import sys
from pathlib import Path

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))


def main():
    """Main application entry point"""
    try:
        from idpatch.cli.cli_interface import cli
    except ImportError as e:
        print("\n❌ Critical Error")
        print("═" * 40)
        print(f"Error importing CLI interface: {e}")
        print("\n🔧 Please check your Python environment and dependencies:")
        print("   • Ensure the package is installed: pip install -e .")
        print("   • Verify Python path and module availability")
        sys.exit(1)

    cli()


if __name__ == "__main__":
    main()
