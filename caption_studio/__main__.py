"""Package entry point for ``python -m caption_studio``.

WHY: Users run the tool as ``python -m caption_studio <command>`` without
installing the console script.

HOW: Delegates straight to the CLI's main() function.
"""

from caption_studio.cli import main

if __name__ == "__main__":
    main()
