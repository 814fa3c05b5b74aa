"""root-relay 入口点。

支持: python -m root_relay
"""

from .app import main

if __name__ == "__main__":
    main()
