# Shim: the canonical entry point lives in tekton_agent/cli/main.py.
import sys

from tekton_agent.cli.main import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
