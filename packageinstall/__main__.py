"""
packageinstall is a command line program that calls the packageinstall library.

Example usage:
  python -m packageinstall build install.yaml --package packages.yaml
"""

from packageinstall.tool.packageinstall import main

if __name__ == "__main__":
    main()
