#!/usr/bin/env python3
"""Development runner (same as the `dbbackup` console script)"""
from dbbackup.cli import main

if __name__ == '__main__':
    main()
