#!/usr/bin/env python3
"""
Entry point for running repl_orchestrator as a module.
This file enables: python -m repl_orchestrator
"""

from .main import main

if __name__ == '__main__':
    main()
